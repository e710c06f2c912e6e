# Task board: optimistic board state, drag-and-drop reordering, and remote sync
#
# Components:
#   schema.py    - Data model (Task, Column, Board, Priority, BoardSettings)
#   state.py     - In-memory board store and pure copy-on-write updates
#   reorder.py   - Drag-and-drop reorder engine
#   gateway.py   - Sync instructions, fire-and-forget dispatch, board load
#   backends.py  - SQLite and PostgREST persistence backends
#   generator.py - LLM-powered task enhancement and bulk drafting
#   importer.py  - Pasted text to task drafts (line split or LLM)
#   manager.py   - Task/column lifecycle operations
#   session.py   - Explicit user/board session context
#   config.py    - YAML + environment configuration
