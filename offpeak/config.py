import os

# OCPP websocket endpoint: ws://WS_HOST:WS_PORT/<ChargePointID>
WS_HOST = os.getenv("WS_HOST", "0.0.0.0")
WS_PORT = int(os.getenv("WS_PORT", "9000"))
HTTP_HOST = os.getenv("HTTP_HOST", "0.0.0.0")
HTTP_PORT = int(os.getenv("HTTP_PORT", "8080"))

# idTag sent with every RemoteStartTransaction
ID_TAG = os.getenv("ID_TAG", "OFFPEAK")
STATE_FILE = os.getenv("STATE_FILE", "sessions.json")

START_MARGIN_SEC = int(os.getenv("START_MARGIN_SEC", "10"))
TRIGGER_TIMEOUT_SEC = float(os.getenv("TRIGGER_TIMEOUT_SEC", "30"))
HEARTBEAT_INTERVAL_SEC = int(os.getenv("HEARTBEAT_INTERVAL_SEC", "300"))
RESPONSE_TIMEOUT_SEC = int(os.getenv("RESPONSE_TIMEOUT_SEC", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
