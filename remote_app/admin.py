from django.contrib import admin

from .models import GitObject, Reference, Repository


@admin.register(Repository)
class RepositoryAdmin(admin.ModelAdmin):
    search_fields = ('name',)


@admin.register(GitObject)
class GitObjectAdmin(admin.ModelAdmin):
    list_display = ('sha1', 'type', 'repo')
    list_filter = ('type',)
    search_fields = ('sha1',)


@admin.register(Reference)
class ReferenceAdmin(admin.ModelAdmin):
    list_display = ('name', 'commit_hash', 'repo')
