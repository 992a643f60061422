"""Steps, Workflows and the engine that compiles Drafts with them.

Modules:
- steps: Step declarations, kinds and options
- registry: the process-wide step registry
- builtin: steps that ship with draftwright
- user_scripts: steps loaded from Python scripts in the vault
- workflow / workflow_store: named step sequences and their storage
- engine: validation and execution
"""
