from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/sync/', include('remote_app.urls', namespace='remote_app')),
]
