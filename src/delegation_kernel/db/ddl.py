from __future__ import annotations

from typing import Iterable


DDL_STATEMENTS: list[str] = [
    "CREATE SCHEMA IF NOT EXISTS delegation;",
    # delegation.requests
    """
    CREATE TABLE IF NOT EXISTS delegation.requests (
      request_id   TEXT         PRIMARY KEY,
      user_id      TEXT         NOT NULL,
      status       TEXT         NOT NULL,
      title        TEXT         NULL,
      summary      TEXT         NULL,
      raw_input    TEXT         NOT NULL,
      domain       TEXT         NULL,
      created_at   TIMESTAMPTZ  NOT NULL DEFAULT now(),
      updated_at   TIMESTAMPTZ  NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS requests_user_created
      ON delegation.requests (user_id, created_at DESC);
    """,
    # delegation.plans (exactly one per request)
    """
    CREATE TABLE IF NOT EXISTS delegation.plans (
      plan_id                 TEXT         PRIMARY KEY,
      request_id              TEXT         NOT NULL REFERENCES delegation.requests(request_id) ON DELETE CASCADE,
      total_steps             INTEGER      NOT NULL,
      estimated_total_effort  TEXT         NULL,
      deadline                TEXT         NULL,
      plan_result             JSONB        NOT NULL DEFAULT '{}'::jsonb,
      created_at              TIMESTAMPTZ  NOT NULL DEFAULT now(),
      CONSTRAINT plans_one_per_request UNIQUE (request_id)
    );
    """,
    # delegation.steps
    """
    CREATE TABLE IF NOT EXISTS delegation.steps (
      step_id         TEXT     PRIMARY KEY,
      plan_id         TEXT     NOT NULL REFERENCES delegation.plans(plan_id) ON DELETE CASCADE,
      sequence        INTEGER  NOT NULL,
      action          TEXT     NOT NULL,
      detail          TEXT     NULL,
      action_type     TEXT     NOT NULL,
      effort          TEXT     NULL,
      delegation      TEXT     NOT NULL,
      status          TEXT     NOT NULL,
      suggested_date  TEXT     NULL,
      dependencies    JSONB    NOT NULL DEFAULT '[]'::jsonb,
      CONSTRAINT steps_plan_sequence_uq UNIQUE (plan_id, sequence)
    );
    """,
    # delegation.outcomes (one per step)
    """
    CREATE TABLE IF NOT EXISTS delegation.outcomes (
      step_id     TEXT         PRIMARY KEY REFERENCES delegation.steps(step_id) ON DELETE CASCADE,
      result      TEXT         NOT NULL,
      notes       TEXT         NULL,
      output      JSONB        NULL,
      updated_at  TIMESTAMPTZ  NOT NULL DEFAULT now()
    );
    """,
    # delegation.delegations
    """
    CREATE TABLE IF NOT EXISTS delegation.delegations (
      delegation_id      TEXT         PRIMARY KEY,
      request_id         TEXT         NOT NULL REFERENCES delegation.requests(request_id) ON DELETE CASCADE,
      user_id            TEXT         NOT NULL,
      plan_id            TEXT         NULL,
      status             TEXT         NOT NULL,
      scope              JSONB        NOT NULL,
      approved_step_ids  TEXT[]       NOT NULL,
      created_at         TIMESTAMPTZ  NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS delegations_request_created
      ON delegation.delegations (request_id, user_id, created_at DESC);
    """,
    # delegation.execution_runs
    """
    CREATE TABLE IF NOT EXISTS delegation.execution_runs (
      run_id         TEXT         PRIMARY KEY,
      request_id     TEXT         NOT NULL REFERENCES delegation.requests(request_id) ON DELETE CASCADE,
      user_id        TEXT         NOT NULL,
      delegation_id  TEXT         NOT NULL REFERENCES delegation.delegations(delegation_id),
      mode           TEXT         NOT NULL,
      status         TEXT         NOT NULL,
      summary        TEXT         NULL,
      error          TEXT         NULL,
      counts         JSONB        NOT NULL DEFAULT '{}'::jsonb,
      started_at     TIMESTAMPTZ  NOT NULL DEFAULT now(),
      finished_at    TIMESTAMPTZ  NULL
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS execution_runs_request_started
      ON delegation.execution_runs (request_id, started_at DESC);
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS execution_runs_one_started
      ON delegation.execution_runs (request_id) WHERE status = 'STARTED';
    """,
    # delegation.execution_run_steps
    """
    CREATE TABLE IF NOT EXISTS delegation.execution_run_steps (
      run_step_id  TEXT         PRIMARY KEY,
      run_id       TEXT         NOT NULL REFERENCES delegation.execution_runs(run_id) ON DELETE CASCADE,
      step_id      TEXT         NOT NULL REFERENCES delegation.steps(step_id) ON DELETE CASCADE,
      status       TEXT         NOT NULL,
      reason       TEXT         NULL,
      message      TEXT         NULL,
      created_at   TIMESTAMPTZ  NOT NULL DEFAULT now(),
      updated_at   TIMESTAMPTZ  NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS execution_run_steps_run
      ON delegation.execution_run_steps (run_id, updated_at);
    """,
    # delegation.action_logs (append-only)
    """
    CREATE TABLE IF NOT EXISTS delegation.action_logs (
      seq              BIGINT       GENERATED ALWAYS AS IDENTITY,
      log_id           TEXT         NOT NULL,
      action           TEXT         NOT NULL,
      request_id       TEXT         NOT NULL REFERENCES delegation.requests(request_id) ON DELETE CASCADE,
      step_id          TEXT         NULL,
      delegation_id    TEXT         NULL,
      run_id           TEXT         NULL,
      message          TEXT         NULL,
      payload_preview  JSONB        NULL,
      created_at       TIMESTAMPTZ  NOT NULL DEFAULT now(),
      PRIMARY KEY (seq),
      CONSTRAINT action_logs_log_id_uq UNIQUE (log_id)
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS action_logs_request_seq
      ON delegation.action_logs (request_id, seq);
    """,
]


async def ensure_schema(pool) -> None:
    async with pool.acquire() as conn:
        async with conn.transaction():
            for stmt in _compact_statements(DDL_STATEMENTS):
                await conn.execute(stmt)


def _compact_statements(statements: Iterable[str]) -> Iterable[str]:
    for stmt in statements:
        cleaned = stmt.strip()
        if not cleaned:
            continue
        yield cleaned
