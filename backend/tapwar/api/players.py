from flask import Blueprint, jsonify, request, current_app
from tapwar import db
from tapwar.models import Player
from tapwar.services.games.constants import RED, BLUE, TEAMS
from tapwar.services.games.roster import pick_team
from tapwar.socketio_events import notify_row_change


players = Blueprint('players', __name__)


def _team_arg():
    team = request.args.get('team')
    if team is not None and team not in TEAMS:
        return None, (jsonify({'error': f'team must be one of {", ".join(TEAMS)}'}), 400)
    return team, None


@players.route('', methods=['GET'])
def list_players():
    team, error = _team_arg()
    if error:
        return error
    query = Player.query
    if team:
        query = query.filter_by(team=team)
    return jsonify([p.to_dict() for p in query.order_by(Player.id).all()])


@players.route('/count', methods=['GET'])
def count_players():
    team, error = _team_arg()
    if error:
        return error
    query = Player.query
    if team:
        query = query.filter_by(team=team)
    return jsonify({'team': team, 'count': query.count()})


@players.route('', methods=['POST'])
def join_game():
    data = request.get_json(silent=True) or {}
    nickname = data.get('nickname')
    if not isinstance(nickname, str) or not nickname.strip():
        return jsonify({'error': 'Nickname is required'}), 400
    nickname = nickname.strip()
    max_len = int(current_app.config.get('MAX_NICKNAME_LEN', 12))
    if len(nickname) > max_len:
        return jsonify({'error': f'Nickname must be at most {max_len} characters'}), 400

    team = data.get('team')
    if team is None:
        team = pick_team(Player.query.filter_by(team=RED).count(), Player.query.filter_by(team=BLUE).count())
    elif team not in TEAMS:
        return jsonify({'error': f'team must be one of {", ".join(TEAMS)}'}), 400

    new_player = Player(nickname=nickname, team=team)
    db.session.add(new_player)
    db.session.commit()

    payload = new_player.to_dict()
    current_app.logger.info(f"[player-join] id={new_player.id} nickname={nickname} team={team}")
    notify_row_change('player', 'INSERT', new=payload)
    return jsonify(payload), 201


@players.route('/<int:player_id>', methods=['DELETE'])
def leave_game(player_id):
    player = db.session.get(Player, player_id)
    if not player:
        return jsonify({'error': 'Player not found'}), 404
    old = player.to_dict()
    db.session.delete(player)
    db.session.commit()
    current_app.logger.info(f"[player-leave] id={player_id} nickname={old['nickname']}")
    notify_row_change('player', 'DELETE', old=old)
    return jsonify({'message': 'You have left the game.'}), 200
