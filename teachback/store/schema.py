# SQL schema for the teachback store

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Users (quota counters only; identity lives elsewhere)
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    tier TEXT NOT NULL DEFAULT 'free' CHECK(tier IN ('free', 'pro')),
    loops_used_today INTEGER NOT NULL DEFAULT 0,
    usage_day TEXT,
    loops_used_this_month INTEGER NOT NULL DEFAULT 0,
    usage_month TEXT,
    created_at TEXT NOT NULL
);

-- Learning loops
CREATE TABLE IF NOT EXISTS learning_loops (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    subject_id TEXT,
    title TEXT,
    source_text TEXT NOT NULL,
    source_type TEXT NOT NULL DEFAULT 'other',
    source_word_count INTEGER NOT NULL DEFAULT 0,
    precision TEXT NOT NULL DEFAULT 'balanced' CHECK(precision IN ('essential', 'balanced', 'precise')),
    key_concepts TEXT NOT NULL DEFAULT '[]',       -- JSON array
    relationships TEXT NOT NULL DEFAULT '[]',      -- JSON array
    status TEXT NOT NULL DEFAULT 'in_progress' CHECK(status IN ('in_progress', 'mastered', 'archived')),
    current_phase TEXT NOT NULL DEFAULT 'first_attempt',
    prior_knowledge_transcript TEXT,
    prior_knowledge_analysis TEXT,                 -- JSON object
    prior_knowledge_score INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Attempts (immutable)
CREATE TABLE IF NOT EXISTS loop_attempts (
    id TEXT PRIMARY KEY,
    loop_id TEXT NOT NULL,
    attempt_number INTEGER NOT NULL,
    attempt_type TEXT NOT NULL CHECK(attempt_type IN ('full_explanation', 'simplify_challenge', 'quick_review')),
    transcript TEXT NOT NULL,
    duration_seconds INTEGER NOT NULL DEFAULT 0,
    score INTEGER NOT NULL CHECK(score BETWEEN 0 AND 100),
    coverage REAL NOT NULL,
    accuracy REAL NOT NULL,
    evaluation TEXT NOT NULL,                      -- JSON object
    speech_metrics TEXT,                           -- JSON object
    persona TEXT NOT NULL DEFAULT 'coach',
    score_delta INTEGER,
    newly_covered TEXT NOT NULL DEFAULT '[]',      -- JSON array
    created_at TEXT NOT NULL,
    UNIQUE (loop_id, attempt_number),
    FOREIGN KEY (loop_id) REFERENCES learning_loops (id) ON DELETE CASCADE
);

-- Socratic remediation sessions
CREATE TABLE IF NOT EXISTS socratic_sessions (
    id TEXT PRIMARY KEY,
    loop_id TEXT NOT NULL,
    attempt_id TEXT,
    target_concepts TEXT NOT NULL DEFAULT '[]',    -- JSON array
    messages TEXT NOT NULL DEFAULT '[]',           -- JSON array
    concepts_addressed TEXT NOT NULL DEFAULT '[]', -- JSON array
    status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'completed', 'abandoned')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (loop_id) REFERENCES learning_loops (id) ON DELETE CASCADE
);

-- Spaced repetition, one row per loop
CREATE TABLE IF NOT EXISTS review_schedule (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    loop_id TEXT NOT NULL UNIQUE,
    next_review_at TEXT NOT NULL,
    interval_days INTEGER NOT NULL DEFAULT 1,
    times_reviewed INTEGER NOT NULL DEFAULT 0,
    last_reviewed_at TEXT,
    last_score INTEGER,
    status TEXT NOT NULL DEFAULT 'scheduled' CHECK(status IN ('scheduled', 'due', 'completed', 'paused')),
    created_at TEXT NOT NULL,
    FOREIGN KEY (loop_id) REFERENCES learning_loops (id) ON DELETE CASCADE
);

-- Global concept store, deduplicated by normalized name
CREATE TABLE IF NOT EXISTS concepts (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    normalized_name TEXT NOT NULL UNIQUE,
    description TEXT,
    category TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS loop_concepts (
    id TEXT PRIMARY KEY,
    loop_id TEXT NOT NULL,
    concept_id TEXT NOT NULL,
    importance TEXT NOT NULL DEFAULT 'supporting' CHECK(importance IN ('core', 'supporting', 'detail')),
    extracted_explanation TEXT,
    was_demonstrated INTEGER NOT NULL DEFAULT 0,
    demonstrated_in_phase TEXT,
    demonstrated_at TEXT,
    created_at TEXT NOT NULL,
    UNIQUE (loop_id, concept_id),
    FOREIGN KEY (loop_id) REFERENCES learning_loops (id) ON DELETE CASCADE,
    FOREIGN KEY (concept_id) REFERENCES concepts (id)
);

CREATE TABLE IF NOT EXISTS concept_relationships (
    id TEXT PRIMARY KEY,
    from_concept_id TEXT NOT NULL,
    to_concept_id TEXT NOT NULL,
    relationship_type TEXT NOT NULL CHECK(relationship_type IN ('causes', 'enables', 'exemplifies', 'contrasts', 'prerequisite')),
    strength REAL NOT NULL DEFAULT 1.0,
    created_at TEXT NOT NULL,
    UNIQUE (from_concept_id, to_concept_id, relationship_type),
    FOREIGN KEY (from_concept_id) REFERENCES concepts (id),
    FOREIGN KEY (to_concept_id) REFERENCES concepts (id)
);

CREATE TABLE IF NOT EXISTS user_concepts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    concept_id TEXT NOT NULL,
    mastery_score INTEGER NOT NULL DEFAULT 0 CHECK(mastery_score BETWEEN 0 AND 100),
    times_encountered INTEGER NOT NULL DEFAULT 0,
    times_demonstrated INTEGER NOT NULL DEFAULT 0 CHECK(times_demonstrated <= times_encountered),
    last_seen_at TEXT,
    last_demonstrated_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, concept_id),
    FOREIGN KEY (concept_id) REFERENCES concepts (id)
);
"""

# Indexes for performance
INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_loops_user ON learning_loops (user_id, status);
CREATE INDEX IF NOT EXISTS idx_attempts_loop ON loop_attempts (loop_id, attempt_number);
CREATE INDEX IF NOT EXISTS idx_socratic_loop ON socratic_sessions (loop_id, status);
CREATE INDEX IF NOT EXISTS idx_review_user_due ON review_schedule (user_id, status, next_review_at);
CREATE INDEX IF NOT EXISTS idx_loop_concepts_concept ON loop_concepts (concept_id);
CREATE INDEX IF NOT EXISTS idx_relationships_from ON concept_relationships (from_concept_id);
CREATE INDEX IF NOT EXISTS idx_relationships_to ON concept_relationships (to_concept_id);
CREATE INDEX IF NOT EXISTS idx_user_concepts_user ON user_concepts (user_id, mastery_score);
"""
