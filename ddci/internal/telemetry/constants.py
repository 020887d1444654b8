from enum import Enum


TELEMETRY_NAMESPACE_CIVISIBILITY = "civisibility"

TELEMETRY_TYPE_GENERATE_METRICS = "generate-metrics"
TELEMETRY_TYPE_DISTRIBUTION = "distributions"

TELEMETRY_METRIC_TYPE_COUNT = "count"
TELEMETRY_METRIC_TYPE_DISTRIBUTIONS = "distributions"


class MetricName:
    EVENT_CREATED = "event_created"
    EVENT_FINISHED = "event_finished"

    MANUAL_API_EVENTS = "manual_api_events"

    EVENTS_ENQUEUED = "events_enqueued_for_serialization"
    ENDPOINT_PAYLOAD_REQUESTS = "endpoint_payload.requests"
    ENDPOINT_PAYLOAD_REQUESTS_MS = "endpoint_payload.requests_ms"
    ENDPOINT_PAYLOAD_REQUESTS_ERRORS = "endpoint_payload.requests_errors"
    ENDPOINT_PAYLOAD_BYTES = "endpoint_payload.bytes"
    ENDPOINT_PAYLOAD_EVENTS_COUNT = "endpoint_payload.events_count"
    ENDPOINT_PAYLOAD_EVENTS_SERIALIZATION_MS = "endpoint_payload.events_serialization_ms"
    ENDPOINT_PAYLOAD_DROPPED = "endpoint_payload.dropped"

    GIT_COMMAND = "git.command"
    GIT_COMMAND_ERRORS = "git.command_errors"
    GIT_COMMAND_MS = "git.command_ms"

    GIT_REQUESTS_SEARCH_COMMITS = "git_requests.search_commits"
    GIT_REQUESTS_SEARCH_COMMITS_MS = "git_requests.search_commits_ms"
    GIT_REQUESTS_SEARCH_COMMITS_ERRORS = "git_requests.search_commits_errors"

    GIT_REQUESTS_OBJECTS_PACK = "git_requests.objects_pack"
    GIT_REQUESTS_OBJECTS_PACK_MS = "git_requests.objects_pack_ms"
    GIT_REQUESTS_OBJECTS_PACK_ERRORS = "git_requests.objects_pack_errors"
    GIT_REQUESTS_OBJECTS_PACK_BYTES = "git_requests.objects_pack_bytes"
    GIT_REQUESTS_OBJECTS_PACK_FILES = "git_requests.objects_pack_files"

    GIT_REQUESTS_SETTINGS = "git_requests.settings"
    GIT_REQUESTS_SETTINGS_MS = "git_requests.settings_ms"
    GIT_REQUESTS_SETTINGS_ERRORS = "git_requests.settings_errors"
    GIT_REQUESTS_SETTINGS_RESPONSE = "git_requests.settings_response"

    ITR_SKIPPABLE_TESTS_REQUEST = "itr_skippable_tests.request"
    ITR_SKIPPABLE_TESTS_REQUEST_MS = "itr_skippable_tests.request_ms"
    ITR_SKIPPABLE_TESTS_REQUEST_ERRORS = "itr_skippable_tests.request_errors"
    ITR_SKIPPABLE_TESTS_RESPONSE_BYTES = "itr_skippable_tests.response_bytes"
    ITR_SKIPPABLE_TESTS_RESPONSE_TESTS = "itr_skippable_tests.response_tests"

    ITR_SKIPPED = "itr_skipped"
    ITR_UNSKIPPABLE = "itr_unskippable"
    ITR_FORCED_RUN = "itr_forced_run"

    CODE_COVERAGE_STARTED = "code_coverage_started"
    CODE_COVERAGE_FINISHED = "code_coverage_finished"
    CODE_COVERAGE_IS_EMPTY = "code_coverage.is_empty"
    CODE_COVERAGE_FILES = "code_coverage.files"
    CODE_COVERAGE_ERRORS = "code_coverage.errors"

    TEST_SESSION = "test_session"


class MetricTag:
    TEST_FRAMEWORK = "test_framework"
    EVENT_TYPE = "event_type"
    HAS_CODEOWNER = "has_codeowner"
    IS_UNSUPPORTED_CI = "is_unsupported_ci"
    BROWSER_DRIVER = "browser_driver"
    IS_RUM = "is_rum"
    LIBRARY = "library"
    ENDPOINT = "endpoint"
    ERROR_TYPE = "error_type"
    EXIT_CODE = "exit_code"
    STATUS_CODE = "status_code"
    REQUEST_COMPRESSED = "rq_compressed"
    RESPONSE_COMPRESSED = "rs_compressed"
    COMMAND = "command"
    COVERAGE_ENABLED = "coverage_enabled"
    ITR_ENABLED = "itr_enabled"
    ITR_SKIP_ENABLED = "itr_skip_enabled"
    REQUIRE_GIT = "require_git"
    PROVIDER = "provider"
    AUTO_INJECTED = "auto_injected"


class EventType(str, Enum):
    TEST = "test"
    SUITE = "suite"
    MODULE = "module"
    SESSION = "session"


class Endpoint(str, Enum):
    TEST_CYCLE = "test_cycle"
    CODE_COVERAGE = "code_coverage"


class ErrorType(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    STATUS_CODE = "status_code"


class GitCommand(str, Enum):
    GET_REPOSITORY = "get_repository"
    GET_BRANCH = "get_branch"
    CHECK_SHALLOW = "check_shallow"
    UNSHALLOW = "unshallow"
    GET_LOCAL_COMMITS = "get_local_commits"
    GET_OBJECTS = "get_objects"
    PACK_OBJECTS = "pack_objects"
