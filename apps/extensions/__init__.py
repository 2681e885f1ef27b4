# ============================================================================
# apps/extensions/__init__.py
# ============================================================================
