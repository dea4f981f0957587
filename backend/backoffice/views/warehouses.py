"""Warehouse, material and stock movement API views."""

from decimal import Decimal

from rest_framework import mixins, serializers, status, viewsets
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..activity_logger import log_activity
from ..models import Material, StockMovement, Warehouse
from ..serializers import (
    MaterialSerializer,
    StockMovementSerializer,
    WarehouseDetailSerializer,
    WarehouseSerializer,
)
from ..services import stock


class WarehouseViewSet(viewsets.ModelViewSet):
    """CRUD operations for warehouses and their live stock."""

    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return Warehouse.objects.prefetch_related('stocks__material').order_by('name')

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return WarehouseDetailSerializer
        return WarehouseSerializer

    def perform_create(self, serializer):
        instance = serializer.save()
        log_activity(self.request.user, 'created', instance)

    def perform_update(self, serializer):
        instance = serializer.save()
        log_activity(self.request.user, 'updated', instance)

    def perform_destroy(self, instance):
        if instance.stocks.filter(quantity__gt=Decimal('0')).exists():
            raise serializers.ValidationError(
                'Cannot delete a warehouse while it still contains stock.'
            )
        if instance.movements.exists() or instance.stock_counts.exists():
            raise serializers.ValidationError(
                'Cannot delete a warehouse with stock history; deactivate it instead.'
            )
        log_activity(self.request.user, 'deleted', instance)
        instance.delete()


class MaterialViewSet(viewsets.ModelViewSet):
    """CRUD operations for materials."""

    serializer_class = MaterialSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = Material.objects.order_by('name')
        if self.request.query_params.get('active') == 'true':
            queryset = queryset.filter(is_active=True)
        return queryset

    def perform_create(self, serializer):
        instance = serializer.save()
        log_activity(self.request.user, 'created', instance)

    def perform_update(self, serializer):
        instance = serializer.save()
        log_activity(self.request.user, 'updated', instance)

    def perform_destroy(self, instance):
        if instance.movements.exists():
            raise serializers.ValidationError(
                'Cannot delete a material with stock movements; deactivate it instead.'
            )
        log_activity(self.request.user, 'deleted', instance)
        instance.delete()


class StockMovementViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    """Append-only stock movement log."""

    serializer_class = StockMovementSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = StockMovement.objects.select_related('material', 'warehouse').order_by(
            '-movement_date', '-id'
        )
        warehouse_id = self.request.query_params.get('warehouse')
        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)
        material_id = self.request.query_params.get('material')
        if material_id:
            queryset = queryset.filter(material_id=material_id)
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        movement = stock.record_movement(
            material=data['material'],
            warehouse=data['warehouse'],
            movement_type=data['movement_type'],
            quantity=data['quantity'],
            movement_date=data.get('movement_date'),
            reason=data.get('reason', ''),
            user=request.user,
        )
        log_activity(request.user, 'created', movement)
        return Response(self.get_serializer(movement).data, status=status.HTTP_201_CREATED)
