"""TaskHub: motor de acesso e ciclo de vida de tarefas multi-empresa."""

__version__ = "0.1.0"
