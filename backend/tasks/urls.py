from django.urls import path

from . import views

app_name = "tasks"

urlpatterns = [
    path("data", views.TaskTreeData.as_view(), name="data"),
    path("save", views.BulkSave.as_view(), name="save"),
    path("task/update", views.UpdateTask.as_view(), name="task-update"),
    path("task/add", views.AddChildTask.as_view(), name="task-add"),
    path("pert", views.PertData.as_view(), name="pert"),
]
