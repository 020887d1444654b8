DEFAULT_SERVICE_NAME = "test"
DEFAULT_SITE = "datadoghq.com"

DEFAULT_AGENT_HOSTNAME = "localhost"
DEFAULT_AGENT_PORT = 8126
DEFAULT_AGENT_SOCKET_FILE = "/var/run/datadog/apm.socket"

# Source: https://docs.datadoghq.com/getting_started/site/
DD_SITE_ALLOWLIST = frozenset(
    {
        "datadoghq.com",
        "us3.datadoghq.com",
        "us5.datadoghq.com",
        "datadoghq.eu",
        "ddog-gov.com",
        "ap1.datadoghq.com",
    }
)

TAG_TRUE = "true"
TAG_FALSE = "false"

CI_APP_TEST_ORIGIN = "ciapp-test"

# 2000-01-01T00:00:00Z
MINIMUM_START_NS = 946684800000000000

HEADER_DD_API_KEY = "DD-API-KEY"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_CONTENT_ENCODING = "Content-Encoding"
HEADER_EVP_SUBDOMAIN = "X-Datadog-EVP-Subdomain"
HEADER_CONTAINER_ID = "Datadog-Container-ID"

CONTENT_TYPE_MSGPACK = "application/msgpack"
CONTENT_TYPE_JSON = "application/json"
CONTENT_ENCODING_GZIP = "gzip"

EVP_PROXY_V2_PATH_PREFIX = "/evp_proxy/v2/"
EVP_PROXY_V4_PATH_PREFIX = "/evp_proxy/v4/"
# Ordered from most to least preferred.
EVP_PROXY_PATH_PREFIXES = (EVP_PROXY_V4_PATH_PREFIX, EVP_PROXY_V2_PATH_PREFIX)
EVP_PROXY_COMPRESSION_SUPPORTED = {
    EVP_PROXY_V4_PATH_PREFIX: True,
    EVP_PROXY_V2_PATH_PREFIX: False,
}

TEST_CYCLE_INTAKE_PATH = "/api/v2/citestcycle"
SETTINGS_PATH = "/api/v2/libraries/tests/services/setting"
SETTINGS_REQUEST_TYPE = "ci_app_test_service_libraries_settings"

TELEMETRY_AGENTLESS_URL = "https://instrumentation-telemetry-intake.%s"
TELEMETRY_AGENTLESS_PATH = "/api/v2/apmtelemetry"
TELEMETRY_AGENT_PATH = "/telemetry/proxy/api/v2/apmtelemetry"
DEFAULT_TELEMETRY_HEARTBEAT_INTERVAL_SECONDS = 60.0

DEFAULT_MAX_PAYLOAD_SIZE = 4 * 1024 * 1024
DEFAULT_BUFFER_SIZE = 10_000
DEFAULT_FLUSH_INTERVAL_SECONDS = 1.0
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 60.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
