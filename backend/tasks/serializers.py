from rest_framework import serializers


class TaskNodeSerializer(serializers.Serializer):
    """Accepts any JSON object as a task; task fields are stored as sent."""

    def to_internal_value(self, data):
        if not isinstance(data, dict):
            raise serializers.ValidationError('Each task must be a JSON object.')
        return data


class UpdateTaskSerializer(serializers.Serializer):
    # numeric ids arrive as ints; lookups compare the exact string form
    id = serializers.CharField(allow_blank=True, trim_whitespace=False)


class AddTaskSerializer(serializers.Serializer):
    parentId = serializers.CharField(required=False, allow_null=True, allow_blank=True,
                                     trim_whitespace=False)
