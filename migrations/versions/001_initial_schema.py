"""Initial schema (SQL-only).

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-15
"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

SCHEMA = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

CREATE TABLE accounts (
    id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    external_subject      TEXT NOT NULL UNIQUE,
    email                 TEXT,
    plan_id               TEXT NOT NULL DEFAULT 'trial',
    payment_customer_ref  TEXT,
    created_at            TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE companies (
    id                       UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    owner_id                 UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    name                     TEXT NOT NULL,
    cnpj                     TEXT NOT NULL,
    regime                   TEXT NOT NULL DEFAULT 'simples_nacional',
    municipality             TEXT,
    municipality_code        TEXT,
    provider_id              TEXT,
    fiscal_status            TEXT,
    municipality_supported   BOOLEAN,
    municipality_checked_at  TIMESTAMPTZ,
    certificate_expires_at   TIMESTAMPTZ,
    municipal_credentials    BOOLEAN NOT NULL DEFAULT false,
    created_at               TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at               TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (owner_id, cnpj)
);

CREATE TABLE clients (
    id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    owner_id       UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    name           TEXT NOT NULL,
    document       TEXT NOT NULL,
    document_type  TEXT NOT NULL CHECK (document_type IN ('cpf', 'cnpj')),
    email          TEXT,
    phone          TEXT,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (owner_id, document)
);

CREATE INDEX idx_clients_owner_name ON clients (owner_id, lower(name));

CREATE TABLE invoices (
    id                   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    company_id           UUID NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    client_id            UUID REFERENCES clients(id) ON DELETE SET NULL,
    amount               NUMERIC(14, 2) NOT NULL CHECK (amount > 0),
    service_description  TEXT NOT NULL,
    service_code         TEXT,
    iss_rate             NUMERIC(5, 2),
    status               TEXT NOT NULL CHECK (
        status IN ('draft', 'processing', 'authorized', 'rejected', 'canceled')
    ),
    number               TEXT,
    provider_id          TEXT,
    verification_code    TEXT,
    pdf_url              TEXT,
    xml_url              TEXT,
    error_message        TEXT,
    issued_at            TIMESTAMPTZ,
    poll_attempts        INTEGER NOT NULL DEFAULT 0,
    last_polled_at       TIMESTAMPTZ,
    created_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at           TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX idx_invoices_company_created ON invoices (company_id, created_at DESC);
CREATE INDEX idx_invoices_number ON invoices (number);
CREATE INDEX idx_invoices_polling ON invoices (last_polled_at NULLS FIRST)
    WHERE status = 'processing' AND provider_id IS NOT NULL;

CREATE TABLE invoice_status_history (
    id          BIGSERIAL PRIMARY KEY,
    invoice_id  UUID REFERENCES invoices(id) ON DELETE CASCADE,
    company_id  UUID NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    status      TEXT NOT NULL,
    message     TEXT NOT NULL,
    metadata    JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE usage_records (
    id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    account_id    UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    amount_cents  INTEGER NOT NULL,
    status        TEXT NOT NULL CHECK (
        status IN ('paid', 'failed', 'invoiced', 'refunded', 'refund_failed')
    ),
    charge_id     TEXT,
    invoice_id    UUID REFERENCES invoices(id) ON DELETE SET NULL,
    error         TEXT,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE conversation_turns (
    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    seq         BIGSERIAL NOT NULL,
    account_id  UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    role        TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content     TEXT NOT NULL,
    metadata    JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX idx_conversation_turns_account_seq ON conversation_turns (account_id, seq DESC);

CREATE TABLE notifications (
    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    account_id  UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    kind        TEXT NOT NULL,
    payload     JSONB NOT NULL DEFAULT '{}'::jsonb,
    read_at     TIMESTAMPTZ,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX idx_notifications_account_unread ON notifications (account_id, created_at DESC)
    WHERE read_at IS NULL;
"""


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql(SCHEMA)


def downgrade() -> None:
    raise NotImplementedError("Downgrade not supported")
