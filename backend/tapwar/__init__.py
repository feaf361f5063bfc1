from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or '*'

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from tapwar.routes import main
    flask_app.register_blueprint(main)

    from tapwar.api.round import rounds
    flask_app.register_blueprint(rounds, url_prefix='/api/round')

    from tapwar.api.players import players
    flask_app.register_blueprint(players, url_prefix='/api/players')

    from tapwar.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from tapwar.models import Host, Round

    @login_manager.user_loader
    def load_host(host_id):
        return db.session.get(Host, int(host_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Host login required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            Round.current()
            host = Host(username=flask_app.config['HOST_USERNAME'])
            host.set_password(flask_app.config['HOST_PASSWORD'])
            db.session.add(host)
            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('create-host')
    @click.argument('username')
    @click.argument('password')
    def create_host_command(username, password):
        """Adds (or re-keys) a host account allowed to drive rounds."""
        with flask_app.app_context():
            host = Host.query.filter_by(username=username).first() or Host(username=username)
            host.set_password(password)
            db.session.add(host)
            db.session.commit()
            print(f'Host {username} saved.')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(create_host_command)

    return flask_app
