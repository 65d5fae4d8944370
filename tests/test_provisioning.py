# tests/test_provisioning.py
"""ProvisioningService com stores em memória (sem banco)."""
from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from quebracabeca_app.errors import DuplicateIdentityError, ProvisioningError, ValidationError
from quebracabeca_app.services.normalizer import CanonicalPaymentEvent
from quebracabeca_app.services.provisioning import ProvisioningService, compute_expiration
from quebracabeca_app.services.stores import PersistenceClient

NOW = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)


class FakeIdentities:
    def __init__(self):
        self.users = {}
        self.created = 0
        self.recovery_sent = []
        self.fail_create = None
        self.fail_recovery = False

    def find_user_by_email(self, email):
        return self.users.get(email.lower())

    def _insert(self, email, profile):
        user = SimpleNamespace(id=len(self.users) + 1, email=email.lower(),
                               name=profile["full_name"], phone=profile["phone"])
        self.users[email.lower()] = user
        return user

    def create_user(self, email, profile):
        if self.fail_create:
            raise self.fail_create
        self.created += 1
        return self._insert(email, profile)

    def send_recovery_link(self, email):
        if self.fail_recovery:
            raise RuntimeError("smtp fora do ar")
        self.recovery_sent.append(email)


class RacingIdentities(FakeIdentities):
    """Simula outra entrega criando o usuário entre a busca e o insert."""

    def create_user(self, email, profile):
        self._insert(email, profile)
        raise DuplicateIdentityError(email)


class FakeSubscriptions:
    def __init__(self):
        self.rows = []
        self.fail = False
        self.cancel_calls = []

    def upsert_active_subscription(self, user_id, record):
        if self.fail:
            raise RuntimeError("insert falhou")
        for row in self.rows:
            if row.user_id == user_id and row.status == "active":
                row.__dict__.update(record)
                return row
        row = SimpleNamespace(id=len(self.rows) + 1, user_id=user_id, **record)
        self.rows.append(row)
        return row

    def update_subscription_status(self, email, status, timestamp):
        self.cancel_calls.append((email, status, timestamp))
        return 0


class FakeTransactions:
    def __init__(self):
        self.rows = []
        self.fail = False

    def insert_transaction(self, record):
        if self.fail:
            raise RuntimeError("insert falhou")
        row = SimpleNamespace(id=len(self.rows) + 1, **record)
        self.rows.append(row)
        return row


@pytest.fixture
def stores():
    return PersistenceClient(identities=FakeIdentities(),
                             subscriptions=FakeSubscriptions(),
                             transactions=FakeTransactions())


@pytest.fixture
def service(stores):
    return ProvisioningService(stores, clock=lambda: NOW)


def _event(**kw):
    data = dict(email="a@b.com", name="Ana", amount=97.0, plan_type="lifetime", status="approved",
                raw={"email": "a@b.com", "status": "approved"})
    data.update(kw)
    return CanonicalPaymentEvent(**data)


# --------------------------
# validade por plano
# --------------------------
@pytest.mark.parametrize("plan, start, expected", [
    ("monthly", datetime(2024, 3, 15, tzinfo=timezone.utc), datetime(2024, 4, 15, tzinfo=timezone.utc)),
    ("monthly", datetime(2024, 1, 31, tzinfo=timezone.utc), datetime(2024, 2, 29, tzinfo=timezone.utc)),
    ("monthly", datetime(2023, 12, 10, tzinfo=timezone.utc), datetime(2024, 1, 10, tzinfo=timezone.utc)),
    ("yearly", datetime(2024, 5, 1, tzinfo=timezone.utc), datetime(2025, 5, 1, tzinfo=timezone.utc)),
    ("yearly", datetime(2024, 2, 29, tzinfo=timezone.utc), datetime(2025, 2, 28, tzinfo=timezone.utc)),
    ("lifetime", datetime(2024, 5, 1, tzinfo=timezone.utc), None),
])
def test_compute_expiration(plan, start, expected):
    assert compute_expiration(plan, start) == expected


def test_compute_expiration_unknown_plan():
    with pytest.raises(ValidationError):
        compute_expiration("weekly", NOW)


# --------------------------
# aprovação
# --------------------------
def test_provision_creates_user_subscription_and_transaction(service, stores):
    result = service.provision(_event())

    assert stores.identities.created == 1
    assert stores.identities.recovery_sent == ["a@b.com"]
    assert len(stores.subscriptions.rows) == 1
    sub = stores.subscriptions.rows[0]
    assert sub.status == "active" and sub.started_at == NOW and sub.expires_at is None
    assert len(stores.transactions.rows) == 1
    tx = stores.transactions.rows[0]
    assert tx.status == "completed"
    assert tx.subscription_id == sub.id
    assert tx.metadata_json["raw_payload"] == {"email": "a@b.com", "status": "approved"}

    data = result.to_dict()
    assert data == {
        "user_id": 1, "subscription_id": 1, "transaction_id": 1,
        "email": "a@b.com", "plan_type": "lifetime", "expires_at": None,
    }
    assert result.user_created is True


def test_provision_monthly_sets_expiration(service):
    result = service.provision(_event(plan_type="monthly"))
    assert result.expires_at == datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)
    assert result.to_dict()["expires_at"] == "2024-02-29T12:00:00+00:00"


def test_provision_twice_reuses_identity(service, stores):
    first = service.provision(_event())
    second = service.provision(_event(email="A@B.com"))

    assert stores.identities.created == 1
    assert first.user_id == second.user_id
    assert second.user_created is False
    # só o primeiro recebe link de definição de senha
    assert stores.identities.recovery_sent == ["a@b.com"]
    # uma assinatura ativa, duas transações
    assert len(stores.subscriptions.rows) == 1
    assert len(stores.transactions.rows) == 2


def test_provision_recovers_from_duplicate_identity_race(stores):
    stores.identities = RacingIdentities()
    service = ProvisioningService(stores, clock=lambda: NOW)

    result = service.provision(_event())
    assert result.user_id == stores.identities.users["a@b.com"].id
    assert result.user_created is False
    assert len(stores.subscriptions.rows) == 1


def test_identity_failure_aborts_without_side_effects(service, stores):
    stores.identities.fail_create = RuntimeError("auth fora do ar")
    with pytest.raises(ProvisioningError) as exc:
        service.provision(_event())
    assert exc.value.status_code == 500
    assert exc.value.step == "create_user"
    assert exc.value.to_dict()["error"] == "Erro ao criar usuário"
    assert stores.subscriptions.rows == []
    assert stores.transactions.rows == []


def test_subscription_failure_skips_transaction(service, stores):
    stores.subscriptions.fail = True
    with pytest.raises(ProvisioningError) as exc:
        service.provision(_event())
    assert exc.value.step == "subscription"
    assert stores.transactions.rows == []
    # usuário criado não é desfeito
    assert stores.identities.created == 1


def test_transaction_failure_still_grants_access(service, stores):
    stores.transactions.fail = True
    result = service.provision(_event())
    assert result.subscription_id == 1
    assert result.transaction_id is None
    assert stores.subscriptions.rows[0].status == "active"


def test_recovery_link_failure_is_not_fatal(service, stores):
    stores.identities.fail_recovery = True
    result = service.provision(_event())
    assert result.user_created is True
    assert len(stores.subscriptions.rows) == 1


# --------------------------
# cancelamento
# --------------------------
def test_cancel_without_subscription_is_noop(service, stores):
    result = service.cancel(_event(status="refunded"))
    assert result.updated == 0
    assert stores.subscriptions.cancel_calls == [("a@b.com", "cancelled", NOW)]
    assert stores.transactions.rows == []
