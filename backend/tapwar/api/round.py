from datetime import timezone

from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from tapwar import db
from tapwar.models import Round
from tapwar.services.games.constants import PHASES, WINNERS
from tapwar.services.games.rounds import parse_timestamp, check_round_invariant
from tapwar.socketio_events import notify_row_change


rounds = Blueprint('rounds', __name__)

_WRITABLE_FIELDS = {'phase', 'round_start_time', 'winner'}


@rounds.route('', methods=['GET'])
def get_round():
    row = Round.current()
    payload = row.to_dict()
    # Clients derive the countdown from round_start_time + duration
    payload['duration'] = int(current_app.config.get('ROUND_DURATION_SEC', 30))
    return jsonify(payload)


@rounds.route('', methods=['PATCH'])
@login_required
def update_round():
    """Write the canonical round row. Only a logged-in host may do this.

    Transition rules are the host's business; the store only refuses rows
    that break the phase invariants. Concurrent writers: last write wins.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({'error': 'JSON body with round fields is required'}), 400
    unknown = set(data) - _WRITABLE_FIELDS
    if unknown:
        return jsonify({'error': f'Unknown fields: {", ".join(sorted(unknown))}'}), 400

    row = Round.current()
    old = row.to_dict()

    phase = data.get('phase', row.phase)
    if phase not in PHASES:
        return jsonify({'error': f'phase must be one of {", ".join(PHASES)}'}), 400
    winner = data['winner'] if 'winner' in data else row.winner
    if winner is not None and winner not in WINNERS:
        return jsonify({'error': f'winner must be one of {", ".join(WINNERS)} or null'}), 400
    if 'round_start_time' in data:
        try:
            start = parse_timestamp(data['round_start_time'])
        except (TypeError, ValueError):
            return jsonify({'error': 'round_start_time must be an ISO-8601 timestamp or null'}), 400
        if start is not None:
            start = start.astimezone(timezone.utc)
    else:
        start = row.round_start_time

    error = check_round_invariant(phase, start, winner)
    if error:
        return jsonify({'error': error}), 400

    row.phase = phase
    row.round_start_time = start
    row.winner = winner
    row.version = (row.version or 0) + 1
    db.session.add(row)
    db.session.commit()

    new = row.to_dict()
    current_app.logger.info(
        f"[round-update] phase {old['phase']} -> {new['phase']} winner={new['winner']} version={new['version']} host={current_user.username}"
    )
    notify_row_change('round', 'UPDATE', new=new, old=old)
    return jsonify(new)
