# ============================================================================
# shared/__init__.py - Cross-cutting helpers used by every app
# ============================================================================
