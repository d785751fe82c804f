# chathub line protocol tokens and defaults

DEFAULT_PORT = 9001

# Server -> client
SUBMITNAME = "SUBMITNAME"
NAMEACCEPTED = "NAMEACCEPTED"
USERLIST = "USERLIST"
USERJOINED = "USERJOINED"
USERLEFT = "USERLEFT"
MESSAGE = "MESSAGE"

# Client -> server command prefixes (including the separating space).
CMD_BROADCAST = "BROADCAST "
CMD_PRIVATE = "PRIVATE "

# Tag placed between MESSAGE and the sender for directed delivery.
PRIVATE_TAG = "(Private)"

NAME_LIST_SEP = ","
LINE_TERMINATOR = "\n"
