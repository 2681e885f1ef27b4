# ============================================================================
# apps/trunks/__init__.py
# ============================================================================
