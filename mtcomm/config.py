"""Tunable parameters shared by the transports and the collectives.

All timeouts are in microseconds unless the name says otherwise.
"""

# ------ runtime ------
IO_THREAD_POLL_TIMEOUT = 10
WAIT_INTERNAL_TIMEOUT = 100
SPIN_THRESHOLD = 300

# ------ TCP ------
TCP_BACKLOG = 128
TCP_POLL_TIMEOUT = 10
UNREACHABLE_ADDR_TIMEOUT_MS = 100

# ------ SHM ------
SHM_SMALL_MSG_SIZE = 1 << 22
SHM_MAX_CONCURRENT_CONN = 1024

# ------ MPI ------
MPI_POLL_TIMEOUT = 10
MPI_CONNECTION_TAG = 0
MPI_DISCONNECT_TAG = 1
MPI_MAKE_PROGRESS_TIME = 0

# ------ MPIP2P ------
MPIP2P_POLL_TIMEOUT = 10
MPIP2P_STOP_PROCESS = "stop_accept"

# ------ MQTT ------
MQTT_POLL_TIMEOUT_MS = 10
MQTT_CONNECT_TIMEOUT_MS = 100
MQTT_OUT_SUFFIX = "-out"
MQTT_IN_SUFFIX = "-in"
MQTT_CONNECTION_TOPIC = "-new_connection"
MQTT_EXIT_TOPIC = "-exit"
MQTT_SERVER_ADDRESS = "tcp://localhost:1883"

# ------ UCX ------
UCX_BACKLOG = 128
UCX_POLL_TIMEOUT = 10
UCX_MAKE_PROGRESS_TIME = 100
UCX_DRAIN_CHUNK_SIZE = 4096

# ------ collectives ------
CCONNECTION_RETRY = 10
CCONNECTION_TIMEOUT_MS = 100
GATHER_THRESHOLD_MSG_SIZE = 1 << 18