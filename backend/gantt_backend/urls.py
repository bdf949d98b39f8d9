from django.urls import include, path

urlpatterns = [
    path("api/gantt/", include("tasks.urls")),
]
