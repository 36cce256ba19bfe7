from django.db import models


class Repository(models.Model):
    name = models.CharField(max_length=100, unique=True)

    def __str__(self):
        return self.name


class GitObject(models.Model):
    """One content-addressed object, stored with its ``<kind> <size>\\0`` header."""

    repo = models.ForeignKey(Repository, on_delete=models.CASCADE)
    sha1 = models.CharField(max_length=64, db_index=True)
    type = models.CharField(max_length=10, choices=[('blob', 'Blob'), ('tree', 'Tree'), ('commit', 'Commit')])
    data = models.BinaryField()

    class Meta:
        unique_together = ('repo', 'sha1')

    def __str__(self):
        return f"{self.type} {self.sha1}"


class Reference(models.Model):
    """Stores branch pointers like 'refs/heads/main'"""
    repo = models.ForeignKey(Repository, on_delete=models.CASCADE)
    name = models.CharField(max_length=255)
    commit_hash = models.CharField(max_length=64)

    class Meta:
        unique_together = ('repo', 'name')

    def __str__(self):
        return f"{self.name} -> {self.commit_hash}"
