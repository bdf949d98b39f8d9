# views.py
import logging
from typing import Any, Dict

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status

from .exceptions import StorageError, TaskNotFound
from .pert import detect_circular_dependencies, flatten_for_pert
from .serializers import AddTaskSerializer, TaskNodeSerializer, UpdateTaskSerializer
from .storage import TaskTreeStore

logger = logging.getLogger(__name__)


def get_store() -> TaskTreeStore:
    """Build a store for the configured data file; nothing is kept between requests."""
    return TaskTreeStore.from_settings()


def error_response(message: str, code: int, **extra: Any) -> Response:
    body: Dict[str, Any] = {"error": message}
    body.update(extra)
    return Response(body, status=code)


class TaskTreeData(APIView):
    """
    GET /api/gantt/data
    Returns the stored list of root tasks, or [] when nothing is stored yet.
    """

    def get(self, request):
        return Response(get_store().load(), status=status.HTTP_200_OK)


class BulkSave(APIView):
    """
    POST /api/gantt/save
    Replaces the whole stored tree with the posted array. Last writer wins.
    """

    def post(self, request):
        serializer = TaskNodeSerializer(data=request.data, many=True)
        serializer.is_valid(raise_exception=True)
        try:
            get_store().replace_all(serializer.validated_data)
        except StorageError:
            return error_response("Failed to save", status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response({"status": "saved"}, status=status.HTTP_200_OK)


class UpdateTask(APIView):
    """
    POST /api/gantt/task/update
    Body: {id, ...fields}. Merges the fields into the matching task and
    returns the merged task.
    """

    def post(self, request):
        serializer = UpdateTaskSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        fields = dict(request.data)
        try:
            node = get_store().update_task(fields["id"], fields)
        except TaskNotFound:
            return error_response("Task ID not found", status.HTTP_404_NOT_FOUND)
        except StorageError:
            return error_response("File write failed", status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response(node, status=status.HTTP_200_OK)


class AddChildTask(APIView):
    """
    POST /api/gantt/task/add
    Body: {parentId?, ...fields}. Without a parentId the task becomes a new
    root; a parentId that matches nothing is a 404. Returns the created task
    with its server-minted id.
    """

    def post(self, request):
        serializer = AddTaskSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        parent_id = serializer.validated_data.get("parentId")

        fields = dict(request.data)
        fields.pop("parentId", None)
        try:
            new_task = get_store().add_task(fields, parent_id=parent_id)
        except TaskNotFound:
            return error_response("Parent ID not found", status.HTTP_404_NOT_FOUND)
        except StorageError:
            return error_response("File write failed", status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response(new_task, status=status.HTTP_200_OK)


class PertData(APIView):
    """
    GET /api/gantt/pert
    Flattens the tree into PERT rows {id, name, duration} plus {from, to}
    dependency edges. A dependency cycle is rejected with 400.
    """

    def get(self, request):
        rows, dependencies = flatten_for_pert(get_store().load())
        cycles = detect_circular_dependencies(dependencies)
        if cycles:
            logger.warning("PERT view refused, %d dependency cycle(s)", len(cycles))
            return error_response("Circular dependencies detected",
                                  status.HTTP_400_BAD_REQUEST, cycles=cycles)
        return Response({"data": rows, "dependencies": dependencies},
                        status=status.HTTP_200_OK)
