# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - messaging/: Twilio gateway client and webhook signature checks
# - llm/: OpenRouter LLM sentiment classification
# - persistence/: SQLite repository
# - config/: Environment and settings management
#
# This layer can be replaced entirely without affecting domain/application layers.
