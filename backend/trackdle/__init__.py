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
    allowed_origins = flask_app.config.get('ALLOWED_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from trackdle.main import main
    flask_app.register_blueprint(main)

    from trackdle.api.multiplayer import multiplayer
    flask_app.register_blueprint(multiplayer, url_prefix='/multiplayer')

    # Register Socket.IO event handlers on the initialized socketio instance
    from trackdle.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    from trackdle.auth import load_user_from_request
    from trackdle.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    login_manager.request_loader(load_user_from_request)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'error': 'Authentication required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from trackdle.models import SongPool
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            for email in ['player1@example.com', 'player2@example.com', 'player3@example.com']:
                user = User(email=email)
                user.set_password('password')
                db.session.add(user)

            # Seed a small song pool
            songs = [
                ('Blinding Lights', 'The Weeknd'),
                ('Levitating', 'Dua Lipa'),
                ('Bad Guy', 'Billie Eilish'),
                ('Shape of You', 'Ed Sheeran'),
                ('Uptown Funk', 'Mark Ronson'),
                ('Rolling in the Deep', 'Adele'),
                ('Take On Me', 'a-ha'),
                ('Mr. Brightside', 'The Killers'),
            ]
            for title, artist in songs:
                db.session.add(SongPool(title=title, artist=artist))

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
