"""Activity log related API views."""

from rest_framework import viewsets
from rest_framework.permissions import IsAuthenticated

from ..serializers import ActivitySerializer


class ActivityViewSet(viewsets.ReadOnlyModelViewSet):
    """Read-only access to user activity logs."""

    serializer_class = ActivitySerializer
    permission_classes = [IsAuthenticated]
    pagination_class = None

    def get_queryset(self):
        queryset = self.request.user.activities.all().order_by('-timestamp')
        date_str = self.request.query_params.get('date')
        if date_str:
            queryset = queryset.filter(timestamp__date=date_str)
        return queryset
