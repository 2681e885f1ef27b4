# ============================================================================
# apps/dialplan/__init__.py
# ============================================================================
