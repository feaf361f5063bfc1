import logging

import click

from config import ClientConfig
from tapwar.errors import StoreError, JoinError
from tapwar.services.games.constants import LOBBY, PLAYING, FINISHED, DRAW
from tapwar.services.games.scoring import ScoreCheckpoint
from tapwar.client.context import GameContext
from tapwar.client.host import HostSession
from tapwar.client.identity import IdentityStore
from tapwar.client.player import PlayerSession
from tapwar.client.store import SocketIOStore


MEDALS = ('1st', '2nd', '3rd')


def render_host(session: HostSession) -> str:
    scores = session.scores
    lines = [f"Room Status: {session.phase}   Time Remaining: {session.time_left:.1f}s"]
    if session.phase == FINISHED:
        winner = session.winner
        lines.append('WINNER: DRAW!' if winner == DRAW else f"WINNER: TEAM {winner}")
        lines.append(f"Red: {scores['red']}  Blue: {scores['blue']}")
        top = session.top_players()
        if not top:
            lines.append('No clicks recorded!')
        for medal, (name, score) in zip(MEDALS, top):
            lines.append(f"  {medal} {name} - {score} clicks")
    elif session.phase == PLAYING:
        lines.append(f"Red {scores['red']} ({session.red_percent:.0f}%) vs Blue {scores['blue']}")
    if session.phase != FINISHED:
        lines.append(f"Team Red ({len(session.red_players)} Joined): {', '.join(p['nickname'] for p in session.red_players)}")
        lines.append(f"Team Blue ({len(session.blue_players)} Joined): {', '.join(p['nickname'] for p in session.blue_players)}")
    return '\n'.join(lines)


def render_player(session: PlayerSession) -> str:
    if not session.joined:
        return 'Not joined.'
    player = session.player
    if session.state.phase == FINISHED:
        return {'VICTORY': 'VICTORY! Well done, champion.', 'DRAW': 'DRAW!'}.get(
            session.outcome, 'DEFEAT. Better luck next time.'
        ) + ' Waiting for Host...'
    if session.state.phase == PLAYING:
        chaos = ' CHAOS MODE!' if session.is_chaos else ''
        return f"TEAM {player['team']} {session.time_left:.1f}s{chaos}"
    return f"{player['nickname']}, you are fighting for TEAM {player['team']}. Waiting for host to start..."


def _run_host(ctx: GameContext, store: SocketIOStore) -> None:
    cfg = ctx.config
    try:
        store.login(cfg.HOST_USERNAME, cfg.HOST_PASSWORD)
    except StoreError as exc:
        raise click.ClickException(f"Host login failed: {exc}")
    session = HostSession(ctx, ScoreCheckpoint(cfg.SCORE_CHECKPOINT_PATH)).open()
    click.echo('Commands: [enter]=status, start, finish, reset, quit')
    try:
        while True:
            command = click.prompt('host', default='', show_default=False).strip().lower()
            if command in ('quit', 'exit'):
                break
            try:
                if command == 'start':
                    if not session.start():
                        click.echo('Cannot start: need LOBBY phase and at least one player.')
                elif command == 'finish':
                    if not session.finish():
                        click.echo('No round in progress.')
                elif command == 'reset':
                    session.reset()
            except StoreError as exc:
                click.echo(f"Store error: {exc}", err=True)
            click.echo(render_host(session))
    finally:
        session.close()


def _run_player(ctx: GameContext, nickname) -> None:
    session = PlayerSession(ctx, IdentityStore.from_config(ctx.config)).open()
    try:
        if not session.joined:
            name = nickname or click.prompt('Nickname')
            try:
                session.join(name)
            except JoinError as exc:
                raise click.ClickException(str(exc))
        click.echo('Press [enter] to tap. Commands: status, leave, quit')
        click.echo(render_player(session))
        while True:
            command = click.prompt('', default='', show_default=False, prompt_suffix='').strip().lower()
            if command in ('quit', 'exit'):
                break
            if command == 'leave':
                session.leave()
                click.echo('You have left the game.')
                break
            if command == '' and session.state.phase == PLAYING:
                session.tap()
                continue
            click.echo(render_player(session))
    finally:
        session.close()


@click.command()
@click.option('--mode', type=click.Choice(['host', 'player']), default='player', show_default=True,
              help='host drives rounds and shows the leaderboard; player taps for a team.')
@click.option('--server', default=None, help='Tap War server URL (defaults to TAPWAR_SERVER_URL).')
@click.option('--nickname', default=None, help='Join with this nickname instead of prompting.')
@click.option('--verbose', is_flag=True, help='Log protocol events.')
def main(mode, server, nickname, verbose):
    """Tap War client."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    )
    store = SocketIOStore(server or ClientConfig.SERVER_URL, namespace=ClientConfig.SOCKET_NAMESPACE)
    try:
        store.connect()
    except StoreError as exc:
        raise click.ClickException(str(exc))
    ctx = GameContext(store, ClientConfig)
    try:
        if mode == 'host':
            _run_host(ctx, store)
        else:
            _run_player(ctx, nickname)
    finally:
        store.close()


if __name__ == '__main__':
    main()
