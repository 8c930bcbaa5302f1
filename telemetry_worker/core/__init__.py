"""Core module - Arquitectura modular del worker de telemetría.

Estructura:
- transport/   → Recepción MQTT
- domain/      → Registros, metadata, documentos y errores
- adapters/    → msgpack + clasificación por canal
- buffer/      → Reensamblado de ráfagas multiparte
- metadata/    → Resolución device → asset → sensor
- pipeline/    → Composición de eventos y orquestación
- broker/      → Publicación de documentos
- monitoring/  → Stats, métricas y health
"""
