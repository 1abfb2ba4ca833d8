"""Memory engine — codec, atomic writes, validation, merge, snapshots, handoff.

Layout:
    <workspace>/
    ├── .aipm/memory.json              # live store, shared with the assistant
    ├── .memory/
    │   ├── local_memory.json          # framework snapshot (committed)
    │   ├── backup.json                # pre-session live store, transient
    │   └── sessions/                  # session records (YAML frontmatter)
    └── <Project>/.memory/local_memory.json   # project snapshots

The live store is never locked. Every write is temp file + rename, and
every file that feeds a write is validated first.
"""
