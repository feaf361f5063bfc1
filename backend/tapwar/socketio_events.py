from flask_socketio import join_room, leave_room, emit
from tapwar import socketio


# Tables whose row changes are fanned out to subscribers
WATCHED_TABLES = ('round', 'player')


def _table_room(table: str) -> str:
    return f"table:{table}"


def _channel_room(channel: str) -> str:
    return f"channel:{channel}"


def notify_row_change(table: str, event: str, new=None, old=None) -> None:
    """Deliver an INSERT / UPDATE / DELETE snapshot to everyone subscribed to ``table``."""
    # Use socketio.emit since this is called from HTTP handlers
    socketio.emit(
        'row_change',
        {'table': table, 'event': event, 'new': new, 'old': old},
        to=_table_room(table),
        namespace='/ws',
    )


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_subscribe(data):
    table = (data or {}).get('table')
    if table not in WATCHED_TABLES:
        emit('error', {'message': f'table must be one of {", ".join(WATCHED_TABLES)}'})
        return
    join_room(_table_room(table))
    emit('subscribed', {'table': table})


def handle_unsubscribe(data):
    table = (data or {}).get('table')
    if table not in WATCHED_TABLES:
        emit('error', {'message': 'unknown table'})
        return
    leave_room(_table_room(table))
    emit('unsubscribed', {'table': table})


def handle_join_channel(data):
    channel = (data or {}).get('channel')
    if not channel or not isinstance(channel, str):
        emit('error', {'message': 'channel is required'})
        return
    join_room(_channel_room(channel))
    emit('channel_joined', {'channel': channel})


def handle_leave_channel(data):
    channel = (data or {}).get('channel')
    if not channel or not isinstance(channel, str):
        emit('error', {'message': 'channel is required'})
        return
    leave_room(_channel_room(channel))
    emit('channel_left', {'channel': channel})


def handle_broadcast(data):
    """Relay an ephemeral message to the rest of the channel. Nothing is stored."""
    data = data or {}
    channel = data.get('channel')
    event = data.get('event')
    if not channel or not event or not isinstance(channel, str):
        emit('error', {'message': 'channel and event are required'})
        return
    envelope = {'channel': channel, 'event': event, 'payload': data.get('payload')}
    emit('broadcast', envelope, to=_channel_room(channel), include_self=False)


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'subscribe': handle_subscribe,
        'unsubscribe': handle_unsubscribe,
        'join_channel': handle_join_channel,
        'leave_channel': handle_leave_channel,
        'broadcast': handle_broadcast,
        'ping': handle_ping,
    }
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        for name, handler in handlers.items():
            socketio.on_event(name, handler, namespace=namespace)
