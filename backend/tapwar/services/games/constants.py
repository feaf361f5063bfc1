LOBBY = 'LOBBY'
PLAYING = 'PLAYING'
FINISHED = 'FINISHED'
PHASES = (LOBBY, PLAYING, FINISHED)

RED = 'RED'
BLUE = 'BLUE'
DRAW = 'DRAW'
TEAMS = (RED, BLUE)
WINNERS = (RED, BLUE, DRAW)
