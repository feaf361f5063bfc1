from flask import Blueprint, request, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user
from tapwar.models import Host

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Tap War server!'})

@main.route('/api/host/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    host = Host.query.filter_by(username=data.get('username')).first()
    if host and host.check_password(data.get('password') or ''):
        login_user(host, remember=True)
        current_app.logger.info(f"[host-login] host={host.username}")
        return jsonify({'message': 'Logged in successfully.', 'host': host.to_dict()})
    return jsonify({'error': 'Invalid username or password'}), 401

@main.route('/api/host/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out successfully.'})

@main.route('/api/host/me', methods=['GET'])
@login_required
def me():
    return jsonify(current_user.to_dict())
