"""Stock count and historical stock API views."""

from django.shortcuts import get_object_or_404
from rest_framework import mixins, serializers, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..activity_logger import log_activity
from ..models import Material, StockCount, StockCountItem, Warehouse
from ..serializers import (
    AddMaterialSerializer,
    HistoricalStockQuerySerializer,
    HistoricalStockSerializer,
    StockCountCreateSerializer,
    StockCountDetailSerializer,
    StockCountItemSerializer,
    StockCountRecalculateSerializer,
    StockCountRecalculationSerializer,
    StockCountSerializer,
)
from ..services import stock


class StockCountViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """Stock counts seeded from the movement log at a cutoff instant."""

    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = StockCount.objects.select_related('warehouse')
        if self.action == 'retrieve':
            queryset = queryset.prefetch_related('items__material')
        warehouse_id = self.request.query_params.get('warehouse')
        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return StockCountDetailSerializer
        return StockCountSerializer

    def _detail(self, stock_count, status_code=status.HTTP_200_OK):
        stock_count.refresh_from_db()
        return Response(StockCountDetailSerializer(stock_count).data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = StockCountCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        warehouse = Warehouse.objects.get(pk=data['warehouse_id'])
        stock_count = stock.create_stock_count(
            warehouse, data['cutoff'], request.user, data.get('notes', '')
        )
        log_activity(request.user, 'created', stock_count)
        return self._detail(stock_count, status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        if instance.status not in (StockCount.PLANNING, StockCount.CANCELLED):
            raise serializers.ValidationError(
                'Only planned or cancelled stock counts can be deleted.'
            )
        log_activity(self.request.user, 'deleted', instance)
        instance.delete()

    @action(detail=True, methods=['post'])
    def recalculate(self, request, pk=None):
        stock_count = self.get_object()
        serializer = StockCountRecalculateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = stock.recalculate_stock_count(
            stock_count.pk, serializer.validated_data.get('cutoff')
        )
        log_activity(
            request.user,
            'recalculated',
            stock_count,
            description=(
                f'Recalculated stock count {stock_count.count_number}: '
                f'{result.items_created} item(s), {result.preserved_entries_restored} count(s) kept.'
            ),
        )
        return Response(
            {
                'result': StockCountRecalculationSerializer(result).data,
                'stock_count': StockCountDetailSerializer(
                    StockCount.objects.get(pk=stock_count.pk)
                ).data,
            }
        )

    @action(detail=True, methods=['post'], url_path='add-material')
    def add_material(self, request, pk=None):
        stock_count = self.get_object()
        serializer = AddMaterialSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        material = Material.objects.get(pk=serializer.validated_data['material_id'])
        item = stock.add_material_to_count(stock_count, material)
        log_activity(
            request.user,
            'updated',
            stock_count,
            description=f'Added {material.name} to stock count {stock_count.count_number}.',
        )
        return Response(StockCountItemSerializer(item).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def submit(self, request, pk=None):
        stock_count = stock.submit_stock_count(self.get_object())
        log_activity(request.user, 'updated', stock_count)
        return self._detail(stock_count)

    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        stock_count = stock.approve_stock_count(self.get_object(), request.user)
        log_activity(
            request.user,
            'updated',
            stock_count,
            description=f'Approved stock count {stock_count.count_number}.',
        )
        return self._detail(stock_count)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        stock_count = stock.cancel_stock_count(self.get_object())
        log_activity(request.user, 'updated', stock_count)
        return self._detail(stock_count)

    @action(detail=False, methods=['get'])
    def historical(self, request):
        query = HistoricalStockQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = query.validated_data
        rows = stock.calculate_stock_at_datetime(data['warehouse_id'], data['cutoff'])
        return Response(
            {
                'warehouse_id': data['warehouse_id'],
                'cutoff_datetime': data['cutoff'],
                'materials': HistoricalStockSerializer(rows, many=True).data,
            }
        )


class StockCountItemViewSet(
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    """Record the physically counted quantity of one item."""

    serializer_class = StockCountItemSerializer
    permission_classes = [IsAuthenticated]
    queryset = StockCountItem.objects.select_related('material', 'stock_count')

    def update(self, request, *args, **kwargs):
        item = get_object_or_404(self.get_queryset(), pk=kwargs.get('pk'))
        serializer = self.get_serializer(item, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        item = stock.record_count(
            item,
            counted_stock=data.get('counted_stock'),
            reason=data.get('reason'),
        )
        log_activity(request.user, 'updated', item)
        return Response(self.get_serializer(item).data)
