"""Current account ledger API views."""

from django.shortcuts import get_object_or_404
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..activity_logger import log_activity
from ..models import CurrentAccount, CurrentAccountTransaction
from ..serializers import (
    AccountStatementSerializer,
    AgingQuerySerializer,
    AgingSerializer,
    CurrentAccountDetailSerializer,
    CurrentAccountSerializer,
    CurrentAccountTransactionSerializer,
    RecalculateSerializer,
    RecalculationResultSerializer,
    StatementQuerySerializer,
)
from ..services import ledger


class CurrentAccountViewSet(viewsets.ModelViewSet):
    """CRUD for current accounts plus balance maintenance actions."""

    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = CurrentAccount.objects.select_related('supplier').order_by('name')
        account_type = self.request.query_params.get('account_type')
        if account_type:
            queryset = queryset.filter(account_type=account_type)
        return queryset

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return CurrentAccountDetailSerializer
        return CurrentAccountSerializer

    def retrieve(self, request, *args, **kwargs):
        account = self.get_object()
        context = self.get_serializer_context()
        context['aging'] = ledger.compute_aging(account.pk)
        serializer = CurrentAccountDetailSerializer(account, context=context)
        return Response(serializer.data)

    def perform_create(self, serializer):
        instance = serializer.save(created_by=self.request.user)
        log_activity(self.request.user, 'created', instance)

    def perform_update(self, serializer):
        instance = serializer.save()
        log_activity(self.request.user, 'updated', instance)

    def perform_destroy(self, instance):
        if instance.transactions.exists():
            raise ValidationError(
                {'detail': 'Accounts with ledger transactions cannot be deleted; deactivate them instead.'}
            )
        log_activity(self.request.user, 'deleted', instance)
        instance.delete()

    @action(detail=True, methods=['get'])
    def aging(self, request, pk=None):
        account = self.get_object()
        query = AgingQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        buckets = ledger.compute_aging(account.pk, query.validated_data.get('as_of'))
        return Response(AgingSerializer(buckets.as_dict()).data)

    @action(detail=True, methods=['get'])
    def statement(self, request, pk=None):
        account = self.get_object()
        query = StatementQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        statement = ledger.build_account_statement(
            account.pk,
            query.validated_data.get('start_date'),
            query.validated_data.get('end_date'),
        )
        return Response(AccountStatementSerializer(statement).data)

    @action(detail=True, methods=['post'])
    def recalculate(self, request, pk=None):
        account = self.get_object()
        serializer = RecalculateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = ledger.recalculate_account_balances(
            account.pk, serializer.validated_data.get('from_date')
        )
        log_activity(
            request.user,
            'recalculated',
            account,
            description=(
                f'Recalculated {account.code}: {result.transactions_walked} transaction(s) walked, '
                f'balance {result.final_balance}.'
            ),
        )
        return Response(RecalculationResultSerializer(result).data)

    @action(detail=True, methods=['get'])
    def consistency(self, request, pk=None):
        account = self.get_object()
        ledger.assert_account_consistent(account.pk)
        return Response({'account_id': account.pk, 'consistent': True})

    @action(detail=False, methods=['post'], url_path='recalculate-balances')
    def recalculate_balances(self, request):
        results = ledger.recalculate_all_balances()
        return Response(
            {
                'accounts': len(results),
                'snapshots_changed': sum(result.snapshots_changed for result in results),
                'results': RecalculationResultSerializer(results, many=True).data,
            }
        )


class CurrentAccountTransactionViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """Ledger rows of one account, with manual DEBT / ADJUSTMENT entry."""

    serializer_class = CurrentAccountTransactionSerializer
    permission_classes = [IsAuthenticated]

    def get_account(self):
        return get_object_or_404(CurrentAccount, pk=self.kwargs.get('current_account_pk'))

    def get_queryset(self):
        return (
            CurrentAccountTransaction.objects.filter(current_account_id=self.kwargs.get('current_account_pk'))
            .select_related('invoice', 'payment')
            .order_by('transaction_date', 'id')
        )

    def create(self, request, *args, **kwargs):
        account = self.get_account()
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        entry = ledger.post_manual_transaction(
            account.pk,
            transaction_type=data['transaction_type'],
            amount=data['amount'],
            transaction_date=data['transaction_date'],
            description=data.get('description', ''),
            reference_number=data.get('reference_number', ''),
            user=request.user,
        )
        log_activity(request.user, 'created', entry)
        return Response(self.get_serializer(entry).data, status=status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        log_activity(self.request.user, 'deleted', instance)
        ledger.delete_manual_transaction(instance)
