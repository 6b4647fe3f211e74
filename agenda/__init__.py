# Agenda planner: daily tasks, routines, deliveries, categories and workspaces
#
# Components:
#   schema.py      - Data model (Task, Category, Settings, User, Workspace)
#   local_store.py - SQLite key/value area standing in for browser local storage
#   supabase.py    - HTTP client for the hosted auth + table API
#   repository.py  - Persistence strategies (remote and local)
#   planner.py     - In-memory state, load state machine, optimistic mutations
#   auth.py        - Sign-in/up/out and user-facing auth error messages
#   workspace.py   - Workspace and member roster management
#   views.py       - Day visibility rules, progress, delivery countdowns
#   migrate.py     - One-shot copy of local storage into the remote backend
#   config.py      - YAML + environment configuration
