from typing import Optional

from vstream.settings import Settings, settings as default_settings
from vstream.store.valkey import ValkeyConnector, ValkeyLogStore
from vstream.telemetry import TraceContextCarrier, TelemetryManager, init_tracer
from vstream.transport import StreamTransport


def build_connector(config: Optional[Settings] = None) -> ValkeyConnector:
    config = config or default_settings
    return ValkeyConnector(
        host=config.VALKEY_HOST,
        port=config.VALKEY_PORT,
        password=config.VALKEY_PASSWORD,
        db=config.VALKEY_DB,
    )


def build_transport(config: Optional[Settings] = None,
                    connector: Optional[ValkeyConnector] = None) -> StreamTransport:
    """
    Wire a Valkey-backed transport from settings.
    The configured consumer group is provisioned on first append.
    """
    config = config or default_settings
    connector = connector or build_connector(config)

    telemetry = TelemetryManager()
    if telemetry.enabled:
        init_tracer(config.OTEL_SERVICE_NAME)

    return StreamTransport(
        ValkeyLogStore(connector),
        carrier=TraceContextCarrier(),
        default_group=config.CONSUMER_GROUP_NAME,
        telemetry=telemetry,
    )
