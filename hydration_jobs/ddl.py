"""Database schema DDL for hydration jobs."""

HYDRATION_JOBS_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS hydration_jobs (
  id                   UUID PRIMARY KEY,
  root_id              UUID NOT NULL,
  parent_id            UUID REFERENCES hydration_jobs (id),

  job_type             TEXT NOT NULL CHECK (job_type IN ('syllabus', 'topics', 'notes', 'questions', 'assemble')),
  hierarchy_level      INT NOT NULL CHECK (hierarchy_level >= 1),
  entity_type          TEXT NOT NULL CHECK (entity_type IN ('SUBJECT', 'CHAPTER', 'TOPIC')),
  entity_id            TEXT NOT NULL,

  language             TEXT,
  difficulty           TEXT CHECK (difficulty IS NULL OR difficulty IN ('easy', 'medium', 'hard')),
  payload              JSONB NOT NULL DEFAULT '{}'::jsonb,

  status               TEXT NOT NULL CHECK (status IN ('pending', 'running', 'completed', 'failed', 'cancelled')),
  attempts             INT NOT NULL DEFAULT 0,
  max_attempts         INT NOT NULL,
  locked_at            TIMESTAMPTZ,
  last_error           TEXT,
  content_ready        BOOLEAN NOT NULL DEFAULT FALSE,

  frontier_level       INT NOT NULL DEFAULT 1,
  chapters_expected    INT NOT NULL DEFAULT 0,
  chapters_completed   INT NOT NULL DEFAULT 0,
  topics_expected      INT NOT NULL DEFAULT 0,
  topics_completed     INT NOT NULL DEFAULT 0,
  notes_expected       INT NOT NULL DEFAULT 0,
  notes_completed      INT NOT NULL DEFAULT 0,
  questions_expected   INT NOT NULL DEFAULT 0,
  questions_completed  INT NOT NULL DEFAULT 0,

  created_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
  completed_at         TIMESTAMPTZ,

  CHECK (
    (parent_id IS NULL AND root_id = id AND hierarchy_level = 1)
    OR (parent_id IS NOT NULL AND root_id <> id AND hierarchy_level > 1)
  )
);

CREATE INDEX IF NOT EXISTS idx_hydration_jobs_root_level_status
ON hydration_jobs (root_id, hierarchy_level, status);

CREATE INDEX IF NOT EXISTS idx_hydration_jobs_running_roots
ON hydration_jobs (created_at)
WHERE status = 'running' AND parent_id IS NULL;

CREATE INDEX IF NOT EXISTS idx_hydration_jobs_target_status
ON hydration_jobs (job_type, entity_type, entity_id, status);

-- One active submitted job per target
CREATE UNIQUE INDEX IF NOT EXISTS uq_hydration_jobs_active_root_target
ON hydration_jobs (job_type, entity_type, entity_id, (COALESCE(difficulty, '')))
WHERE parent_id IS NULL AND status IN ('pending', 'running');

-- One child per (root, level, entity, difficulty) so fan-out can be re-run
CREATE UNIQUE INDEX IF NOT EXISTS uq_hydration_jobs_child
ON hydration_jobs (root_id, hierarchy_level, entity_id, (COALESCE(difficulty, '')))
WHERE parent_id IS NOT NULL;

-- Stale claim reaper
CREATE INDEX IF NOT EXISTS idx_hydration_jobs_claimed
ON hydration_jobs (locked_at)
WHERE status = 'running' AND locked_at IS NOT NULL;
"""

OUTBOX_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS hydration_outbox (
  id          UUID PRIMARY KEY,
  queue       TEXT NOT NULL,
  payload     JSONB NOT NULL,
  meta        JSONB NOT NULL DEFAULT '{}'::jsonb,
  attempts    INT NOT NULL DEFAULT 0,
  sent_at     TIMESTAMPTZ,
  last_error  TEXT,
  created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_hydration_outbox_unsent
ON hydration_outbox (created_at)
WHERE sent_at IS NULL;
"""

AUDIT_LOG_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS hydration_job_audit_log (
  id           BIGSERIAL PRIMARY KEY,
  job_id       UUID NOT NULL,
  event        TEXT NOT NULL CHECK (event IN (
                 'CREATED', 'ENQUEUED', 'ENQUEUE_FAILED', 'STARTED', 'RESPONSE_RECEIVED',
                 'VALIDATION_PASSED', 'VALIDATION_FAILED', 'COMPLETED', 'FAILED',
                 'COMPLETION_SKIPPED', 'CANCELLED', 'REQUEUED')),
  prev_status  TEXT,
  new_status   TEXT,
  message      TEXT,
  meta         JSONB NOT NULL DEFAULT '{}'::jsonb,
  created_at   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_hydration_job_audit_log_job
ON hydration_job_audit_log (job_id, id);

CREATE OR REPLACE FUNCTION hydration_audit_log_immutable() RETURNS trigger AS $$
BEGIN
  RAISE EXCEPTION 'hydration_job_audit_log is append-only';
END;
$$ LANGUAGE plpgsql;

CREATE OR REPLACE TRIGGER trg_hydration_audit_log_immutable
BEFORE UPDATE OR DELETE ON hydration_job_audit_log
FOR EACH ROW EXECUTE FUNCTION hydration_audit_log_immutable();
"""

RECONCILER_LOCK_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS hydration_reconciler_lock (
  name          TEXT PRIMARY KEY,
  holder        TEXT NOT NULL,
  locked_until  TIMESTAMPTZ NOT NULL,
  created_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

SYSTEM_SETTINGS_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS hydration_system_settings (
  key         TEXT PRIMARY KEY,
  value       TEXT,
  updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

EXTERNAL_JOBS_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS hydration_external_jobs (
  id           UUID PRIMARY KEY,
  job_type     TEXT NOT NULL,
  entity_type  TEXT NOT NULL,
  entity_id    TEXT NOT NULL,
  payload      JSONB NOT NULL DEFAULT '{}'::jsonb,
  created_at   TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

CURRICULUM_TABLES_DDL = """
CREATE TABLE IF NOT EXISTS boards (
  id    TEXT PRIMARY KEY,
  name  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS class_levels (
  id        TEXT PRIMARY KEY,
  board_id  TEXT NOT NULL REFERENCES boards (id),
  grade     INT NOT NULL
);

CREATE TABLE IF NOT EXISTS subjects (
  id        TEXT PRIMARY KEY,
  class_id  TEXT NOT NULL REFERENCES class_levels (id),
  name      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chapters (
  id          TEXT PRIMARY KEY,
  subject_id  TEXT NOT NULL REFERENCES subjects (id),
  name        TEXT NOT NULL,
  slug        TEXT NOT NULL,
  position    INT NOT NULL DEFAULT 0,
  status      TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'approved')),
  lifecycle   TEXT NOT NULL DEFAULT 'active',
  created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
  UNIQUE (subject_id, slug)
);

CREATE TABLE IF NOT EXISTS topics (
  id          TEXT PRIMARY KEY,
  chapter_id  TEXT NOT NULL REFERENCES chapters (id),
  name        TEXT NOT NULL,
  slug        TEXT NOT NULL,
  position    INT NOT NULL DEFAULT 0,
  status      TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'approved')),
  lifecycle   TEXT NOT NULL DEFAULT 'active',
  created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
  UNIQUE (chapter_id, slug)
);

CREATE TABLE IF NOT EXISTS topic_notes (
  id          TEXT PRIMARY KEY,
  topic_id    TEXT NOT NULL REFERENCES topics (id),
  language    TEXT NOT NULL,
  version     INT NOT NULL DEFAULT 1,
  title       TEXT NOT NULL,
  content     JSONB NOT NULL,
  status      TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'approved')),
  job_id      UUID,
  created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
  UNIQUE (topic_id, language, version)
);

CREATE TABLE IF NOT EXISTS question_sets (
  id          TEXT PRIMARY KEY,
  topic_id    TEXT NOT NULL REFERENCES topics (id),
  language    TEXT NOT NULL,
  difficulty  TEXT NOT NULL CHECK (difficulty IN ('easy', 'medium', 'hard')),
  status      TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'approved')),
  job_id      UUID,
  created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
  UNIQUE (topic_id, language, difficulty)
);

CREATE TABLE IF NOT EXISTS questions (
  id               TEXT PRIMARY KEY,
  question_set_id  TEXT NOT NULL REFERENCES question_sets (id),
  position         INT NOT NULL,
  prompt           TEXT NOT NULL,
  answer           TEXT NOT NULL,
  explanation      TEXT,
  options          JSONB
);
"""

ALL_DDL = "\n".join(
    [
        HYDRATION_JOBS_TABLE_DDL,
        OUTBOX_TABLE_DDL,
        AUDIT_LOG_TABLE_DDL,
        RECONCILER_LOCK_TABLE_DDL,
        SYSTEM_SETTINGS_TABLE_DDL,
        EXTERNAL_JOBS_TABLE_DDL,
        CURRICULUM_TABLES_DDL,
    ]
)
