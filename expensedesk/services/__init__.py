"""Business logic. Blueprints call these; services never import blueprints."""
