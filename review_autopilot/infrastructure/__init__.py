# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - gmb/: Google Business Profile reviews client
# - whatsapp/: WhatsApp Cloud API template messaging
# - llm/: OpenRouter LLM reply generation
# - persistence/: SQLite stores for reviews, queue, workflow, outlets
# - config/: Environment and settings management
#
# This layer can be replaced entirely without affecting domain/application layers.
