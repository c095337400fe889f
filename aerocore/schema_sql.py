SCHEMA_SQL = '''
CREATE TABLE IF NOT EXISTS account (
    id TEXT PRIMARY KEY,
    plan TEXT NOT NULL DEFAULT 'BASIC',
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS aircraft (
    id INTEGER PRIMARY KEY,
    account_id TEXT NOT NULL,
    registration TEXT NOT NULL,
    model TEXT NOT NULL DEFAULT 'N/A',
    airframe_hours REAL CHECK (airframe_hours IS NULL OR airframe_hours >= 0),
    engine_hours REAL CHECK (engine_hours IS NULL OR engine_hours >= 0),
    propeller_hours REAL CHECK (propeller_hours IS NULL OR propeller_hours >= 0),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT,
    FOREIGN KEY (account_id) REFERENCES account(id),
    UNIQUE(account_id, registration)
);

CREATE TABLE IF NOT EXISTS limits_snapshot (
    aircraft_id INTEGER PRIMARY KEY,
    engine_tbo_hours REAL,
    avionics_certification_date TEXT,
    magnetos_hours_since_inspection REAL,
    vacuum_pump_hours_since_replacement REAL,
    propeller_inspection_date TEXT,
    airframe_inspection_date TEXT,
    elt_last_test_date TEXT,
    elt_battery_replaced_date TEXT,
    elt_battery_expiry_date TEXT,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (aircraft_id) REFERENCES aircraft(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS scan (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    aircraft_id INTEGER,
    document_type TEXT NOT NULL CHECK (document_type IN ('maintenance_report','invoice','stc','other')),
    state TEXT NOT NULL CHECK (state IN ('submitted','extracting','extracted','validating','validated','applied','rejected','failed')),
    image_sha256 TEXT,
    reservation_token TEXT,
    raw_payload TEXT,
    validated_payload TEXT,
    applied_ids TEXT,
    error_message TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (aircraft_id) REFERENCES aircraft(id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_scan_aircraft_created ON scan(aircraft_id, created_at);

CREATE TABLE IF NOT EXISTS quota_period (
    account_id TEXT NOT NULL,
    period_start TEXT NOT NULL,
    period_end TEXT NOT NULL,
    ceiling INTEGER NOT NULL CHECK (ceiling >= 0),
    consumed INTEGER NOT NULL DEFAULT 0 CHECK (consumed >= 0),
    reserved INTEGER NOT NULL DEFAULT 0 CHECK (reserved >= 0),
    PRIMARY KEY (account_id, period_start),
    CHECK (consumed + reserved <= ceiling)
);

CREATE TABLE IF NOT EXISTS quota_reservation (
    token TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    period_start TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('reserved','committed','released')),
    created_at TEXT NOT NULL,
    settled_at TEXT,
    FOREIGN KEY (account_id, period_start) REFERENCES quota_period(account_id, period_start)
);

CREATE TABLE IF NOT EXISTS maintenance_record (
    id INTEGER PRIMARY KEY,
    aircraft_id INTEGER,
    date TEXT,
    description TEXT NOT NULL,
    work_order_number TEXT,
    ame_name TEXT,
    ame_license TEXT,
    amo_name TEXT,
    airframe_hours REAL,
    engine_hours REAL,
    propeller_hours REAL,
    labor_cost REAL,
    parts_cost REAL,
    total_cost REAL,
    remarks TEXT,
    source TEXT NOT NULL DEFAULT 'manual' CHECK (source IN ('ocr','manual')),
    scan_id TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (aircraft_id) REFERENCES aircraft(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS part_record (
    id INTEGER PRIMARY KEY,
    aircraft_id INTEGER,
    part_number TEXT NOT NULL,
    name TEXT,
    serial_number TEXT,
    quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 0),
    price REAL,
    supplier TEXT,
    installation_date TEXT,
    installation_airframe_hours REAL,
    confirmed INTEGER NOT NULL DEFAULT 0,
    source TEXT NOT NULL DEFAULT 'manual' CHECK (source IN ('ocr','manual')),
    scan_id TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT,
    FOREIGN KEY (aircraft_id) REFERENCES aircraft(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS adsb_record (
    id INTEGER PRIMARY KEY,
    aircraft_id INTEGER,
    adsb_type TEXT NOT NULL DEFAULT 'AD' CHECK (adsb_type IN ('AD','SB')),
    reference_number TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'UNKNOWN',
    compliance_date TEXT,
    compliance_airframe_hours REAL,
    source TEXT NOT NULL DEFAULT 'manual' CHECK (source IN ('ocr','manual')),
    scan_id TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT,
    FOREIGN KEY (aircraft_id) REFERENCES aircraft(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS stc_record (
    id INTEGER PRIMARY KEY,
    aircraft_id INTEGER,
    stc_number TEXT NOT NULL,
    title TEXT,
    description TEXT,
    holder TEXT,
    installation_date TEXT,
    installation_airframe_hours REAL,
    source TEXT NOT NULL DEFAULT 'manual' CHECK (source IN ('ocr','manual')),
    scan_id TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT,
    FOREIGN KEY (aircraft_id) REFERENCES aircraft(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS invoice_record (
    id INTEGER PRIMARY KEY,
    aircraft_id INTEGER,
    invoice_number TEXT,
    supplier TEXT,
    invoice_date TEXT,
    parts_cost REAL,
    labor_cost REAL,
    hours_worked REAL,
    total REAL,
    currency TEXT,
    source TEXT NOT NULL DEFAULT 'manual' CHECK (source IN ('ocr','manual')),
    scan_id TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT,
    FOREIGN KEY (aircraft_id) REFERENCES aircraft(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS bulletin_alert (
    id INTEGER PRIMARY KEY,
    aircraft_id INTEGER NOT NULL,
    type TEXT NOT NULL,
    reference TEXT,
    title TEXT,
    message TEXT,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (aircraft_id) REFERENCES aircraft(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS data_ledger (
    id INTEGER PRIMARY KEY,
    table_name TEXT NOT NULL,
    action TEXT NOT NULL,
    row_id TEXT,
    aircraft_id INTEGER,
    actor TEXT,
    details TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_ledger_aircraft ON data_ledger(aircraft_id);
'''
