from django.apps import AppConfig


class RemoteAppConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'remote_app'
    verbose_name = 'py_sync remote'
