"""Current account payment API views."""

from rest_framework import viewsets
from rest_framework.permissions import IsAuthenticated

from ..activity_logger import log_activity
from ..models import Payment
from ..serializers import PaymentSerializer


class PaymentViewSet(viewsets.ModelViewSet):
    """CRUD for payments.

    Completing, editing or deleting a payment moves its PAYMENT ledger row
    and its bank account balance through ``Payment.save`` / ``delete``.
    """

    serializer_class = PaymentSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = Payment.objects.select_related('current_account', 'bank_account')
        account_id = self.request.query_params.get('current_account')
        if account_id:
            queryset = queryset.filter(current_account_id=account_id)
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset

    def perform_create(self, serializer):
        instance = serializer.save(created_by=self.request.user)
        log_activity(self.request.user, 'created', instance)

    def perform_update(self, serializer):
        instance = serializer.save()
        log_activity(self.request.user, 'updated', instance)

    def perform_destroy(self, instance):
        log_activity(self.request.user, 'deleted', instance)
        instance.delete()
