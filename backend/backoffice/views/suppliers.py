"""Supplier related API views."""

from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..activity_logger import log_activity
from ..models import Supplier
from ..serializers import CurrentAccountSerializer, SupplierSerializer


class SupplierViewSet(viewsets.ModelViewSet):
    """CRUD operations for suppliers."""

    serializer_class = SupplierSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return Supplier.objects.all().order_by('name')

    def perform_create(self, serializer):
        instance = serializer.save(created_by=self.request.user)
        log_activity(self.request.user, 'created', instance)

    def perform_update(self, serializer):
        instance = serializer.save()
        log_activity(self.request.user, 'updated', instance)

    def perform_destroy(self, instance):
        log_activity(self.request.user, 'deleted', instance)
        instance.delete()

    @action(detail=True, methods=['get'], url_path='current-accounts')
    def current_accounts(self, request, pk=None):
        supplier = self.get_object()
        accounts = supplier.current_accounts.order_by('name')
        return Response(CurrentAccountSerializer(accounts, many=True).data)
