from battlequiz import create_app, socketio
from battlequiz.services.battle import get_coordinator

app = create_app()

if __name__ == '__main__':
    # Use SocketIO server to enable websockets in dev
    try:
        socketio.run(app, debug=True)
    finally:
        get_coordinator(app).shutdown()
