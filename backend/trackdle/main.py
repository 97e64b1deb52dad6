from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from trackdle import db
from trackdle.auth import issue_token
from trackdle.models import User

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Trackdle game server!'})

@main.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password')
    if not email or not password:
        return jsonify({'error': 'Missing email or password'}), 400

    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already registered'}), 400

    user = User(email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    return jsonify({'token': issue_token(user), 'user': user.to_dict()}), 201

@main.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    user = User.query.filter_by(email=(data.get('email') or '').strip().lower()).first()
    if user and user.check_password(data.get('password') or ''):
        return jsonify({'token': issue_token(user), 'user': user.to_dict()})
    return jsonify({'error': 'Invalid email or password'}), 401

@main.route('/me')
@login_required
def me():
    return jsonify({'user': current_user.to_dict()})
