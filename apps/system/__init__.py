# ============================================================================
# apps/system/__init__.py
# ============================================================================
