# ============================================================================
# apps/sync/__init__.py
# ============================================================================
