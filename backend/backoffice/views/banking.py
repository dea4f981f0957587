"""Bank account related API views."""

from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..activity_logger import log_activity
from ..models import BankAccount
from ..serializers import BankAccountSerializer, PaymentSerializer


class BankAccountViewSet(viewsets.ModelViewSet):
    """CRUD operations for bank accounts."""

    serializer_class = BankAccountSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return BankAccount.objects.all().order_by('name')

    def perform_create(self, serializer):
        instance = serializer.save(created_by=self.request.user)
        log_activity(self.request.user, 'created', instance)

    def perform_update(self, serializer):
        instance = serializer.save()
        log_activity(self.request.user, 'updated', instance)

    def perform_destroy(self, instance):
        log_activity(self.request.user, 'deleted', instance)
        instance.delete()

    @action(detail=True, methods=['get'])
    def payments(self, request, pk=None):
        bank_account = self.get_object()
        queryset = bank_account.payments.select_related('current_account')
        return Response(PaymentSerializer(queryset, many=True).data)
