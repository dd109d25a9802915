"""Standard exit codes for pd-node.

This module defines standard exit codes used across the pd-node CLI
for consistent error reporting and scripting support.
"""


class ExitCode:
    """Standard exit codes for pd-node.
    
    These codes follow common Unix conventions where possible:
    - 0: Success
    - 1: General error
    - 128+N: Fatal error signal N
    - 130: Terminated by Ctrl+C (SIGINT)
    
    pd-node specific codes start at 2:
    - 2: Configuration error
    - 3: No suitable JavaScript runtime
    - 4: Script error (missing script, script failed to load)
    - 5: Bridge error (spawn failure, runtime exited unexpectedly)
    - 6: Invalid argument
    """
    
    # Standard success
    SUCCESS = 0
    
    # General errors
    GENERAL_ERROR = 1
    
    # pd-node specific errors (2-6)
    CONFIGURATION_ERROR = 2
    RUNTIME_NOT_FOUND = 3
    SCRIPT_ERROR = 4
    BRIDGE_ERROR = 5
    INVALID_ARGUMENT = 6
    
    # Signal-based exits (128 + signal number)
    CANCELLED = 130  # Ctrl+C (SIGINT = 2)
    
    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the name of an exit code.
        
        Args:
            code: The exit code value
            
        Returns:
            Human-readable name for the exit code
        """
        names = {
            cls.SUCCESS: "SUCCESS",
            cls.GENERAL_ERROR: "GENERAL_ERROR",
            cls.CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
            cls.RUNTIME_NOT_FOUND: "RUNTIME_NOT_FOUND",
            cls.SCRIPT_ERROR: "SCRIPT_ERROR",
            cls.BRIDGE_ERROR: "BRIDGE_ERROR",
            cls.INVALID_ARGUMENT: "INVALID_ARGUMENT",
            cls.CANCELLED: "CANCELLED",
        }
        return names.get(code, f"UNKNOWN({code})")
    
    @classmethod
    def get_description(cls, code: int) -> str:
        """Get the description of an exit code.
        
        Args:
            code: The exit code value
            
        Returns:
            Human-readable description for the exit code
        """
        descriptions = {
            cls.SUCCESS: "Operation completed successfully",
            cls.GENERAL_ERROR: "An unexpected error occurred",
            cls.CONFIGURATION_ERROR: "Configuration error or invalid config file",
            cls.RUNTIME_NOT_FOUND: "No JavaScript runtime able to run the script",
            cls.SCRIPT_ERROR: "Script not found or failed to load",
            cls.BRIDGE_ERROR: "Runtime process failed to start or exited unexpectedly",
            cls.INVALID_ARGUMENT: "Invalid command-line argument",
            cls.CANCELLED: "Operation cancelled by user",
        }
        return descriptions.get(code, f"Unknown exit code: {code}")
