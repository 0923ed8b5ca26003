SCHEMA_SQL = r"""
-- Item catalog (raw materials, finished goods, spare parts)
CREATE TABLE IF NOT EXISTS items (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  item_key TEXT NOT NULL UNIQUE,         -- lower(trim(name)), ledger identity
  category TEXT NOT NULL,
  unit TEXT NOT NULL DEFAULT 'kg'
);

-- Formulations (recipes): ingredient qty per ONE unit of output
CREATE TABLE IF NOT EXISTS formulations (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  output_item TEXT NOT NULL,
  output_unit TEXT NOT NULL DEFAULT 'kg'
);

CREATE TABLE IF NOT EXISTS formulation_ingredients (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  formulation_id TEXT NOT NULL,
  position INTEGER NOT NULL,
  item_name TEXT NOT NULL,
  quantity_per_unit REAL NOT NULL,
  FOREIGN KEY (formulation_id) REFERENCES formulations(id) ON DELETE CASCADE
);

-- Ledger: every stock movement, partitioned into logs by log_name.
-- No FK to items: movements match items by item_key.
CREATE TABLE IF NOT EXISTS movements (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  log_name TEXT NOT NULL,
  seq INTEGER NOT NULL,                  -- stable, monotonic within log_name
  kind TEXT NOT NULL,
  role TEXT NOT NULL,                    -- IN / OUT
  item_name TEXT NOT NULL,
  item_key TEXT NOT NULL,
  item_id TEXT,
  quantity REAL NOT NULL,
  unit TEXT NOT NULL DEFAULT 'kg',
  move_date TEXT NOT NULL,               -- ISO date
  txn_group TEXT,
  batch_code TEXT,

  -- document fields carried for the presentation layer
  customer TEXT,
  supplier TEXT,
  po_number TEXT,
  invoice_no TEXT,
  bags REAL,
  qty_per_bag REAL,
  handling_cost REAL,                    -- unloading (receipts) or loading (dispatch)
  machine_no TEXT,
  document TEXT,
  notes TEXT,

  created_ts TEXT NOT NULL,
  UNIQUE (log_name, seq)
);

-- Last sequence handed out per log; never decremented, so deletes do not renumber.
CREATE TABLE IF NOT EXISTS log_sequences (
  log_name TEXT PRIMARY KEY,
  last_seq INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS ix_movements_item_key ON movements(item_key);
CREATE INDEX IF NOT EXISTS ix_movements_txn_group ON movements(txn_group);
CREATE INDEX IF NOT EXISTS ix_movements_batch_code ON movements(batch_code);

-- Production batches
CREATE TABLE IF NOT EXISTS production_batches (
  batch_code TEXT PRIMARY KEY,           -- PB-YYYYMMDD-NNN
  formulation_id TEXT,
  formulation_name TEXT NOT NULL,
  output_item TEXT,
  target_quantity REAL NOT NULL,
  status TEXT NOT NULL DEFAULT 'PLANNED', -- PLANNED / IN_PRODUCTION / COMPLETED
  actual_yield TEXT,                     -- e.g. '100.0', set on completion only
  created_at TEXT NOT NULL,
  completed_at TEXT
);

-- Requirement snapshot frozen at planning time
CREATE TABLE IF NOT EXISTS batch_requirements (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  batch_code TEXT NOT NULL,
  position INTEGER NOT NULL,
  ingredient TEXT NOT NULL,
  required_qty REAL NOT NULL,
  FOREIGN KEY (batch_code) REFERENCES production_batches(batch_code) ON DELETE CASCADE
);

-- Saved custom report definitions (JSON body)
CREATE TABLE IF NOT EXISTS report_definitions (
  name TEXT PRIMARY KEY,
  definition TEXT NOT NULL,
  created_at TEXT NOT NULL
);
"""
