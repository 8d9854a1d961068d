# wsrelayd protocol constants (message types and field names)

# Envelope keys
K_TYPE = "type"
K_TIMESTAMP = "timestamp"
K_MESSAGE = "message"
K_ACK = "acknowledged"

# Outbound message types
T_WELCOME = "welcome"
T_USER_JOINED = "user_joined"
T_USER_LEFT = "user_left"
T_USER_RENAMED = "user_renamed"
T_USERNAME_CHANGED = "username_changed"
T_PRIVATE_MESSAGE_SENT = "private_message_sent"
T_USER_LIST = "user_list"
T_PONG = "pong"
T_ECHO = "echo"
T_ERROR = "error"

# Inbound message types (T_CHAT and T_PRIVATE_MESSAGE are also relayed out)
T_SET_USERNAME = "set_username"
T_CHAT = "chat"
T_PRIVATE_MESSAGE = "private_message"
T_GET_USERS = "get_users"
T_PING = "ping"

# Inbound body keys
B_USERNAME = "username"
B_TEXT = "text"
B_TARGET_CLIENT_ID = "targetClientId"

# Outbound body keys
B_CLIENT_ID = "clientId"
B_OLD_USERNAME = "oldUsername"
B_NEW_USERNAME = "newUsername"
B_FROM = "from"
B_FROM_CLIENT_ID = "fromClientId"
B_TO = "to"
B_USERS = "users"
B_TOTAL_USERS = "totalUsers"

# user_list entry keys
U_ID = "id"
U_USERNAME = "username"
U_CONNECTED_AT = "connectedAt"
U_IP = "ip"

ERR_INVALID_FORMAT = "Invalid message format. Expected JSON."

DEFAULT_PORT = 3000
DEFAULT_HEARTBEAT_INTERVAL_S = 30.0
DEFAULT_USERNAME_PREFIX = "User_"
DEFAULT_GREETING = "Welcome to the WebSocket Server!"
HTTP_STATUS_TEXT = "WebSocket Server is running\n"

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_INTERNAL_ERROR = 1011
