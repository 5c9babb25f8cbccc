"""
Lightup Database Schema Definitions

Raw SQL for SQLite, applied as an ordered list of embedded migrations.
Each migration runs once and is recorded in `schema_migrations`.
"""

SCHEMA_MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version TEXT PRIMARY KEY,
    applied_at TEXT NOT NULL
);
"""

MIGRATION_INITIAL = """
CREATE TABLE IF NOT EXISTS boards (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS cards (
    id TEXT PRIMARY KEY,
    board_id TEXT NOT NULL DEFAULT 'default' REFERENCES boards(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    stage TEXT NOT NULL DEFAULT 'backlog',
    position INTEGER NOT NULL DEFAULT 0,
    priority TEXT NOT NULL DEFAULT 'medium',
    working_directory TEXT NOT NULL DEFAULT '.',
    plan_path TEXT,
    ai_session_id TEXT,
    ai_status TEXT NOT NULL DEFAULT 'idle',
    ai_progress TEXT NOT NULL DEFAULT '{}',
    linked_documents TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS subtasks (
    id TEXT PRIMARY KEY,
    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    completed INTEGER NOT NULL DEFAULT 0,
    position INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS labels (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    color TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS card_labels (
    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    label_id TEXT NOT NULL REFERENCES labels(id) ON DELETE CASCADE,
    PRIMARY KEY (card_id, label_id)
);

CREATE TABLE IF NOT EXISTS comments (
    id TEXT PRIMARY KEY,
    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    author TEXT NOT NULL DEFAULT 'user',
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cards_stage ON cards(stage);
CREATE INDEX IF NOT EXISTS idx_cards_board ON cards(board_id);
CREATE INDEX IF NOT EXISTS idx_cards_session ON cards(ai_session_id);
CREATE INDEX IF NOT EXISTS idx_subtasks_card ON subtasks(card_id);
CREATE INDEX IF NOT EXISTS idx_comments_card ON comments(card_id);

INSERT OR IGNORE INTO boards (id, name, position, created_at, updated_at)
VALUES ('default', 'Main Board', 0, strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'), strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'));

INSERT OR IGNORE INTO labels (id, name, color) VALUES
    ('lbl-bug', 'Bug', '#f44336'),
    ('lbl-feature', 'Feature', '#4caf50'),
    ('lbl-improvement', 'Improvement', '#2196f3'),
    ('lbl-docs', 'Documentation', '#ff9800'),
    ('lbl-urgent', 'Urgent', '#e91e63');
"""

MIGRATION_AGENT_WORK = """
ALTER TABLE cards ADD COLUMN ai_agent TEXT;
ALTER TABLE cards ADD COLUMN branch_name TEXT;
ALTER TABLE cards ADD COLUMN worktree_path TEXT;
ALTER TABLE subtasks ADD COLUMN phase TEXT NOT NULL DEFAULT 'Phase 1';
ALTER TABLE subtasks ADD COLUMN phase_order INTEGER NOT NULL DEFAULT 1;

CREATE TABLE IF NOT EXISTS agent_logs (
    id TEXT PRIMARY KEY,
    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    session_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    agent TEXT,
    content TEXT NOT NULL,
    metadata TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_agent_logs_card ON agent_logs(card_id, created_at);
"""

MIGRATION_CARD_VERSIONS = """
CREATE TABLE IF NOT EXISTS card_versions (
    id TEXT PRIMARY KEY,
    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    priority TEXT NOT NULL,
    stage TEXT NOT NULL,
    working_directory TEXT NOT NULL,
    linked_documents TEXT NOT NULL DEFAULT '[]',
    changed_by TEXT NOT NULL DEFAULT 'user',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_card_versions_card ON card_versions(card_id, created_at);
"""

MIGRATION_BOARD_SETTINGS = """
CREATE TABLE IF NOT EXISTS board_settings (
    board_id TEXT PRIMARY KEY REFERENCES boards(id) ON DELETE CASCADE,
    codebase_path TEXT,
    context_markdown TEXT,
    document_links TEXT NOT NULL DEFAULT '[]',
    variables TEXT NOT NULL DEFAULT '{}',
    tech_stack TEXT,
    communication_patterns TEXT,
    environments TEXT,
    code_conventions TEXT,
    testing_requirements TEXT,
    api_conventions TEXT,
    infrastructure TEXT,
    updated_at TEXT NOT NULL
);
"""

MIGRATION_QUESTIONS_AND_NOTIFICATIONS = """
CREATE TABLE IF NOT EXISTS ai_questions (
    id TEXT PRIMARY KEY,
    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    session_id TEXT NOT NULL,
    question TEXT NOT NULL,
    question_type TEXT NOT NULL DEFAULT 'select',
    options TEXT NOT NULL DEFAULT '[]',
    multiple INTEGER NOT NULL DEFAULT 0,
    answer TEXT,
    answered_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ai_questions_card ON ai_questions(card_id, created_at);

CREATE TABLE IF NOT EXISTS notifications (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    notification_type TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    card_id TEXT,
    board_id TEXT,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notifications_unread ON notifications(is_read, created_at);
"""

MIGRATION_SESSION_MAPPINGS = """
CREATE TABLE IF NOT EXISTS session_mappings (
    child_session_id TEXT PRIMARY KEY,
    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    parent_session_id TEXT NOT NULL,
    agent_type TEXT,
    description TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_session_mappings_card ON session_mappings(card_id);
"""

MIGRATIONS_SQLITE = [
    ("20260214_001_initial", MIGRATION_INITIAL),
    ("20260220_001_agent_work", MIGRATION_AGENT_WORK),
    ("20260222_001_card_versions", MIGRATION_CARD_VERSIONS),
    ("20260223_001_board_settings", MIGRATION_BOARD_SETTINGS),
    ("20260227_001_questions_notifications", MIGRATION_QUESTIONS_AND_NOTIFICATIONS),
    ("20260305_001_session_mappings", MIGRATION_SESSION_MAPPINGS),
]
