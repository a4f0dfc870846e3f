"""Database schema DDL for durable jobs."""


def jobs_table_ddl(table_name: str = "durable_jobs") -> str:
    """Return the CREATE statements for a jobs table with the given name."""
    return f"""
CREATE TABLE IF NOT EXISTS "{table_name}" (
  id               UUID PRIMARY KEY,
  idempotency_key  TEXT NOT NULL UNIQUE,
  trigger_type     TEXT NOT NULL,
  stage            TEXT,

  status           TEXT NOT NULL CHECK (status IN ('queued', 'running', 'completed', 'error')),
  payload          JSONB NOT NULL,
  context          JSONB,

  attempts         INT NOT NULL DEFAULT 0 CHECK (attempts >= 0),
  max_attempts     INT NOT NULL CHECK (max_attempts > 0),
  -- max_attempts most recently requested by the producer
  attempt_budget   INT NOT NULL CHECK (attempt_budget > 0),

  scheduled_at     TIMESTAMPTZ NOT NULL,
  locked_at        TIMESTAMPTZ,
  lock_owner       TEXT,
  last_error       TEXT,

  created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at       TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS "idx_{table_name}_queued_schedule"
ON "{table_name}" (scheduled_at, created_at)
WHERE status = 'queued';

-- Stale lease reclamation
CREATE INDEX IF NOT EXISTS "idx_{table_name}_running_locked_at"
ON "{table_name}" (locked_at)
WHERE status = 'running';

CREATE INDEX IF NOT EXISTS "idx_{table_name}_status_updated"
ON "{table_name}" (status, updated_at);
"""


JOBS_TABLE_DDL = jobs_table_ddl()
